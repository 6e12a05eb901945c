import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, UploadFile, File, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from truthlens.config import settings
from truthlens.dashboard import build_dashboard, new_report_id
from truthlens.errors import InvalidTransition
from truthlens.overlay import render_overlay
from truthlens.schemas import ApplicationPhase, DashboardView, SessionSnapshot, SessionState
from truthlens.state_machine import AnalysisSession

logger = logging.getLogger("TruthLensApp")


def _session(request: Request) -> AnalysisSession:
    return request.app.state.session


def _require_result(app: FastAPI) -> SessionState:
    state = app.state.session.state
    if state.phase != ApplicationPhase.RESULT or state.report is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"No completed report (phase is {state.phase.value})."
        )
    return state


def create_app(session: Optional[AnalysisSession] = None) -> FastAPI:
    app = FastAPI(title="TruthLens Forensics API")
    app.state.session = session or AnalysisSession()
    app.state.report_meta = None

    def _track_report(state: SessionState):
        # Report id and issue time stay fixed for the lifetime of one result
        if state.phase == ApplicationPhase.RESULT:
            if app.state.report_meta is None:
                app.state.report_meta = (new_report_id(), datetime.now(timezone.utc))
        else:
            app.state.report_meta = None

    app.state.session.add_listener(_track_report)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidTransition)
    async def invalid_transition_handler(request: Request, exc: InvalidTransition):
        logger.warning(f"Rejected request {request.url.path}: {exc}")
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.get("/health")
    async def health():
        return {"status": "ok", "engine": "ENGINE: ONLINE", "max_upload_mb": settings.MAX_UPLOAD_MB}

    @app.post("/analyze", response_model=SessionSnapshot, status_code=status.HTTP_202_ACCEPTED)
    async def analyze(request: Request, file: UploadFile = File(...)):
        logger.info(f"Received file upload: {file.filename}, content type: {file.content_type}")
        session = _session(request)
        if session.state.phase != ApplicationPhase.IDLE:
            raise InvalidTransition("select_file", session.state.phase)

        file_content = await file.read()
        return session.begin(file_content, file.content_type, file.filename)

    @app.get("/state", response_model=SessionSnapshot)
    async def get_state(request: Request):
        return _session(request).snapshot()

    @app.post("/reset", response_model=SessionSnapshot)
    async def reset(request: Request):
        logger.info("Reset requested")
        return await _session(request).reset()

    @app.get("/dashboard", response_model=DashboardView)
    async def dashboard(request: Request):
        state = _require_result(request.app)
        report_id, issued_at = request.app.state.report_meta or (None, None)
        return build_dashboard(state.report, state.frames, report_id=report_id, issued_at=issued_at)

    @app.get("/frames/{index}/overlay.jpg")
    async def frame_overlay(request: Request, index: int):
        state = _require_result(request.app)
        if index < 0 or index >= len(state.frames):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No frame at index {index}.")
        image = await asyncio.to_thread(render_overlay, state.frames[index], state.report.anomalies)
        return Response(content=image, media_type="image/jpeg")

    @app.get("/report/export")
    async def export_report(request: Request):
        state = _require_result(request.app)
        report_id, issued_at = request.app.state.report_meta
        payload = {
            "report_id": report_id,
            "authenticated_at": issued_at.isoformat(),
            "filename": state.filename,
            "frame_timestamps": [f.timestamp_seconds for f in state.frames],
            "report": state.report.model_dump(mode="json", by_alias=True),
        }
        return JSONResponse(
            content=payload,
            headers={"Content-Disposition": f'attachment; filename="{report_id}.json"'}
        )

    @app.websocket("/ws/progress")
    async def progress_stream(websocket: WebSocket):
        await websocket.accept()
        session: AnalysisSession = websocket.app.state.session
        queue = session.subscribe()
        logger.info("[TruthLens] Progress subscriber connected.")

        async def receive_from_client():
            # Only used to notice the disconnect
            while True:
                await websocket.receive_text()

        async def send_to_client():
            await websocket.send_json(session.snapshot().model_dump(mode="json"))
            while True:
                snap = await queue.get()
                await websocket.send_json(snap.model_dump(mode="json"))

        task_receive = asyncio.create_task(receive_from_client())
        task_send = asyncio.create_task(send_to_client())
        try:
            done, pending = await asyncio.wait(
                [task_receive, task_send],
                return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                try:
                    task.result()
                except WebSocketDisconnect:
                    pass
                except Exception as e:
                    logger.error(f"Progress stream ended with unexpected exception: {e}", exc_info=True)
            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            session.unsubscribe(queue)
            logger.info("[TruthLens] Progress subscriber disconnected.")

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
