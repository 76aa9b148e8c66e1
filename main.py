# main.py
import json
import uuid
from time import time

import firebase_admin
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from firebase_admin import credentials

from config import settings
from retriva.scripts.logging_config import setup_logging, get_logger, set_request_id

# 1) 로깅 설정(최우선)
# 운영 환경에서 JSON 로그를 원하면 json_fmt=True
setup_logging(json_fmt=False)
logger = get_logger(__name__)

# 2) Firebase 초기화
cred_obj = None

try:
    if settings.FIREBASE_CREDENTIALS_JSON_STRING:
        cred_obj = credentials.Certificate(json.loads(settings.FIREBASE_CREDENTIALS_JSON_STRING))
        logger.info("Firebase credentials loaded from FIREBASE_CREDENTIALS_JSON_STRING.")
    elif settings.GOOGLE_APPLICATION_CREDENTIALS:
        cred_obj = credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS)
        logger.info("Firebase credentials loaded from GOOGLE_APPLICATION_CREDENTIALS file.")

    if cred_obj:
        firebase_admin.initialize_app(cred_obj)
        logger.info("Firebase initialized successfully.")
    else:
        logger.warning("Firebase credentials not found. Reports and chat endpoints will fail.")
except Exception as e:
    logger.exception("Firebase initialization failed: %s", e)

# 3) FastAPI 앱
app = FastAPI(title="Retriva Lost & Found API")

# 4) 요청 로깅 미들웨어
@app.middleware("http")
async def log_requests(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    set_request_id(rid)

    start = time()
    path = request.url.path
    method = request.method
    query = request.url.query
    client_ip = getattr(request.client, 'host', '-') if request.client else '-'
    session = request.headers.get("X-Session-ID", "-")

    if method == 'GET' and query:
        logger.info("REQ start %s %s?%s ip=%s session=%s", method, path, query, client_ip, session)
    else:
        logger.info("REQ start %s %s ip=%s session=%s", method, path, client_ip, session)

    status = 'NA'
    try:
        response = await call_next(request)
        status = response.status_code
        response.headers["X-Request-ID"] = rid
        return response
    finally:
        duration = (time() - start) * 1000
        logger.info("REQ end %s %s status=%s %.1fms", method, path, status, duration)

# 5) CORS
allowed_origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger.info("CORS middleware configured for %s", allowed_origins)

# 6) 라우터
from retriva.api import chat, reports

app.include_router(reports.router)
app.include_router(chat.router)

# 7) 엔드포인트
@app.get("/")
def root():
    return {"message": "Retriva backend", "routes": [
        "/reports/extract",
        "/reports/analyze",
        "/reports/validate",
        "/reports/describe",
        "/reports/safety",
        "/reports/search/parse",
        "/reports/matches",
        "/reports/{report_id}/matches",
        "/reports/compare",
        "/reports/{report_id}/resolve",
        "/chat/{chat_id}/messages",
        "/chat/{chat_id}/send",
        "/chat/{chat_id}/read",
        "/chat/{chat_id}/block",
    ]}
