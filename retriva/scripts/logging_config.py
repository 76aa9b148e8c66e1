# logging_config.py
import logging
import logging.config
import logging.handlers
from pathlib import Path
from datetime import datetime
import json
import contextvars

# 요청 단위 식별자(ContextVar로 보관)
_request_id_ctx = contextvars.ContextVar("request_id", default="-")

class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get("-")
        return True

def set_request_id(req_id: str):
    _request_id_ctx.set(req_id)

def get_logger(name: str = __name__) -> logging.Logger:
    return logging.getLogger(name)

# 로그 디렉터리
LOG_DIR = Path("logs")
LOG_DIR.mkdir(parents=True, exist_ok=True)


def _rotating(filename: str) -> dict:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "level": "INFO",
        "formatter": "default",
        "filters": ["request_id"],
        "filename": str(LOG_DIR / filename),
        "when": "midnight",
        "interval": 1,
        "backupCount": 30,
        "encoding": "utf-8",
    }


def build_dict_config(json_fmt: bool = False) -> dict:
    fmt = (
        '{"ts":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s",'
        '"request_id":"%(request_id)s","msg":"%(message)s"}'
        if json_fmt
        else '%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s | %(message)s'
    )

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
        },
        "formatters": {
            "default": {
                "format": fmt,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "INFO",
                "formatter": "default",
                "filters": ["request_id"],
            },
            "file_app": _rotating("app.log"),
            "file_model_cascade": _rotating("model_cascade.log"),
            "file_chat_sync": _rotating("chat_sync.log"),
        },
        "loggers": {
            # 루트 로거: 앱 전반
            "": {
                "level": "INFO",
                "handlers": ["console", "file_app"],
            },
            # 모델 캐스케이드 시도/제외/자가복구 기록
            "model_cascade": {
                "level": "INFO",
                "handlers": ["console", "file_model_cascade"],
                "propagate": False,
            },
            # 채팅 읽음 처리 / 전송 기록
            "chat_sync": {
                "level": "INFO",
                "handlers": ["console", "file_chat_sync"],
                "propagate": False,
            },
            # uvicorn 로거 레벨 통일
            "uvicorn": {"level": "INFO"},
            "uvicorn.error": {"level": "INFO"},
            "uvicorn.access": {"level": "INFO"},
        },
    }

def setup_logging(json_fmt: bool = False):
    logging.config.dictConfig(build_dict_config(json_fmt=json_fmt))

# ===== 캐스케이드 / 채팅 보조 함수들 =====
def log_cascade_attempt(model_id: str, outcome: str, latency_ms: float,
                        error: str | None = None, logger: logging.Logger | None = None):
    logger = logger or get_logger("model_cascade")
    if outcome == "ok":
        logger.info("cascade.attempt model=%s outcome=ok latency=%.0fms", model_id, latency_ms)
    else:
        logger.warning("cascade.attempt model=%s outcome=%s latency=%.0fms err=%s",
                       model_id, outcome, latency_ms, (error or "")[:180])

def log_cascade_outcome(details: dict, logger: logging.Logger | None = None):
    logger = logger or get_logger("model_cascade")
    logger.info("CASCADE_OUTCOME: %s", json.dumps({
        "timestamp": datetime.now().isoformat(),
        **details,
    }, ensure_ascii=False))

def log_sync_event(event_type: str, chat_id: str, details: dict,
                   logger: logging.Logger | None = None):
    logger = logger or get_logger("chat_sync")
    logger.info("SYNC_EVENT: %s chat=%s %s", event_type, chat_id,
                json.dumps(details, ensure_ascii=False, default=str))
