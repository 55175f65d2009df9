"""tests/test_job_queue.py - background execution without a redis server"""
import threading

from job_queue import RedisQueue, Worker

UNREACHABLE = "redis://127.0.0.1:1/0"


def test_queue_unavailable_without_server():
    queue = RedisQueue(UNREACHABLE, "apk_analysis_jobs")
    assert queue.available() is False
    assert queue.push({"job_id": "x"}) is False
    assert queue.pop_blocking(timeout=1) is None


def test_worker_falls_back_to_threads():
    done = threading.Event()
    seen = {}

    def handler(job_id, apk_path):
        seen.update(job_id=job_id, apk_path=apk_path)
        done.set()

    worker = Worker(handler, RedisQueue(UNREACHABLE, "apk_analysis_jobs"))
    assert worker.start() is False

    worker.enqueue({"job_id": "j1", "apk_path": "/tmp/a.apk"})
    assert done.wait(timeout=5)
    assert seen == {"job_id": "j1", "apk_path": "/tmp/a.apk"}
