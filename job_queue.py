import json
import logging
import threading
from typing import Callable, Optional

import redis

logger = logging.getLogger(__name__)


class RedisQueue:
    def __init__(self, url: str, name: str) -> None:
        self.name = name
        try:
            self.client = redis.Redis.from_url(url, decode_responses=True)
        except Exception as exc:
            logger.info("redis queue disabled: %s", exc)
            self.client = None

    def available(self) -> bool:
        if self.client is None:
            return False
        try:
            # Lightweight health check; if it fails, disable Redis usage so we can fall back.
            self.client.ping()
            return True
        except redis.RedisError:
            self.client = None
            return False

    def push(self, payload: dict) -> bool:
        if not self.available():
            return False
        try:
            self.client.rpush(self.name, json.dumps(payload))
            return True
        except redis.RedisError as exc:
            logger.warning("redis push failed, falling back to threads: %s", exc)
            self.client = None
            return False

    def pop_blocking(self, timeout: int = 5) -> Optional[dict]:
        if not self.available():
            return None
        try:
            res = self.client.blpop(self.name, timeout=timeout)
            if not res:
                return None
            _, raw = res
            return json.loads(raw)
        except (redis.RedisError, ValueError) as exc:
            logger.warning("redis pop failed: %s", exc)
            self.client = None
            return None


class Worker:
    """Runs analysis jobs off the request thread.

    Jobs go through the Redis list when Redis answers; otherwise each job gets
    its own short-lived daemon thread.
    """

    def __init__(self, handler: Callable[..., object], queue: RedisQueue) -> None:
        self.handler = handler
        self.redis_queue = queue
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        # Only run a consumer loop if Redis is available; otherwise enqueue runs inline threads
        if not self.redis_queue.available():
            return False
        if self.thread and self.thread.is_alive():
            return True
        self.stop_event.clear()
        self.thread = threading.Thread(target=self._loop, name="analysis-worker", daemon=True)
        self.thread.start()
        return True

    def stop(self) -> None:
        self.stop_event.set()

    def enqueue(self, payload: dict) -> None:
        if self.thread and self.thread.is_alive() and self.redis_queue.push(payload):
            return
        t = threading.Thread(target=self.handler, kwargs=payload, name=f"analysis-{payload.get('job_id')}", daemon=True)
        t.start()

    def _loop(self) -> None:
        while not self.stop_event.is_set():
            job = self.redis_queue.pop_blocking(timeout=3)
            if not job:
                if self.redis_queue.client is None:
                    logger.warning("redis went away, worker loop exiting")
                    return
                continue
            try:
                self.handler(**job)
            except Exception:
                # keep the loop alive; the pipeline records its own failures
                logger.exception("analysis handler crashed for %s", job.get("job_id"))
