import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi import Request
from fastapi import Response
from loguru import logger

from fedreceiver.config import INBOX_WORKERS
from fedreceiver.incoming_activities import ContactUpgradeWorker
from fedreceiver.incoming_activities import InboxWorker
from fedreceiver.services import Delivery
from fedreceiver.services import Services
from fedreceiver.utils.workers import Worker


def create_app(services: Services) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        workers: list[Worker] = [InboxWorker(services) for _ in range(INBOX_WORKERS)]
        workers.append(ContactUpgradeWorker(services))
        tasks = [asyncio.create_task(worker.run_forever()) for worker in workers]
        logger.info(f"Started {len(workers)} workers")

        yield

        for worker in workers:
            worker.stop()
        await asyncio.gather(*tasks, return_exceptions=True)

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)

    async def _enqueue(request: Request, uid: int) -> Response:
        body = await request.body()
        if not body:
            return Response(status_code=400)

        services.deliveries.put_nowait(
            Delivery(
                body=body,
                headers=dict(request.headers),
                uid=uid,
                method=request.method,
                path=request.url.path,
            )
        )
        logger.info(f"Queued delivery for {uid=}")
        return Response(status_code=202)

    @app.post("/inbox")
    async def shared_inbox(request: Request) -> Response:
        return await _enqueue(request, 0)

    @app.post("/users/{uid}/inbox")
    async def user_inbox(request: Request, uid: int) -> Response:
        return await _enqueue(request, uid)

    return app
