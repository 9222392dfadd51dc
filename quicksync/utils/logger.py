# quicksync/utils/logger.py
import os, sys, time

LEVELS = {"ERROR": 40, "WARN": 30, "INFO": 20, "DEBUG": 10, "NONE": 100}
PREFIX = "[QuickSync]"
BODY_PREVIEW = 2048

def _threshold() -> int:
    return LEVELS.get(os.getenv("LOG_LEVEL", "INFO").upper(), 20)

def _ts():
    return time.strftime("%H:%M:%S")

def log(level: str, msg: str):
    if LEVELS[level] >= _threshold():
        print(f"[{_ts()}][{level}] {PREFIX} {msg}", file=sys.stdout if LEVELS[level] < 40 else sys.stderr)

def preview(body) -> str:
    text = body if isinstance(body, str) else repr(body)
    return text if len(text) <= BODY_PREVIEW else text[:BODY_PREVIEW] + "…"

def debug(msg): log("DEBUG", msg)
def info(msg):  log("INFO", msg)
def warn(msg):  log("WARN", msg)
def error(msg): log("ERROR", msg)
