from __future__ import annotations

from quizlobby.core.task_queue import BackgroundQueue


async def test_one_waiting_job_per_key():
    queue = BackgroundQueue(concurrency=2)
    runs: list[str] = []

    def job(tag: str):
        async def _run() -> None:
            runs.append(tag)

        return _run

    # Workers not started yet: everything stays waiting
    assert queue.enqueue(7, job("a"))
    assert not queue.enqueue(7, job("dup"))
    assert queue.enqueue(8, job("b"))
    assert queue.is_waiting(7)

    queue.start()
    try:
        await queue.join()
        assert sorted(runs) == ["a", "b"]
        assert not queue.is_waiting(7)
        assert queue.enqueue(7, job("again"))
        await queue.join()
        assert runs[-1] == "again"
    finally:
        await queue.stop()
    assert not queue.started


async def test_running_job_can_requeue_its_key():
    queue = BackgroundQueue(concurrency=1)
    runs: list[int] = []

    async def retrying() -> None:
        runs.append(len(runs))
        if len(runs) < 2:
            assert queue.enqueue("lobby", retrying)

    queue.start()
    queue.enqueue("lobby", retrying)
    await queue.stop()
    assert runs == [0, 1]


async def test_failing_job_keeps_worker_alive():
    queue = BackgroundQueue(concurrency=1)
    done: list[int] = []

    async def boom() -> None:
        raise RuntimeError("generator down")

    async def ok() -> None:
        done.append(1)

    queue.start()
    queue.enqueue("x", boom)
    queue.enqueue("y", ok)
    await queue.stop()
    assert done == [1]
