import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import Identity, TokenDecoder, get_identity
from config import Settings
from database import Database, utcnow
from errors import Internal, InvalidArgument, ServiceError
from events import EventService
from participation import ParticipationService
from schemas import EventDraft, EventUpdate, UserUpdate
from users import UserService

logger = logging.getLogger(__name__)

HTTP_ERROR_NAMES = {
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
}


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


def create_app(
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
    token_decoder: Optional[TokenDecoder] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    settings = settings or Settings()
    database = database or Database.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.ensure_indexes()
        yield

    app = FastAPI(title="Hiking Events API", lifespan=lifespan)
    app.state.database = database
    app.state.token_decoder = token_decoder or TokenDecoder(settings)
    app.state.event_service = EventService(database, page_size=settings.events_page_size, clock=clock)
    app.state.participation_service = ParticipationService(database, clock=clock)
    app.state.user_service = UserService(database, clock=clock)

    @app.middleware("http")
    async def internal_errors(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            error = Internal()
            return JSONResponse(status_code=error.status_code, content=error.to_dict())

    # added last so it wraps every response, including 500s
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = InvalidArgument(_validation_message(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail), "error": HTTP_ERROR_NAMES.get(exc.status_code, "HTTPError")},
            headers=getattr(exc, "headers", None),
        )

    register_routes(app)
    return app


def events_service(request: Request) -> EventService:
    return request.app.state.event_service


def participation_service(request: Request) -> ParticipationService:
    return request.app.state.participation_service


def user_service(request: Request) -> UserService:
    return request.app.state.user_service


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def root():
        return {"service": "hiking-events", "status": "ok"}

    @app.get("/health")
    def health():
        return {"ok": True}

    # Events
    @app.post("/events", status_code=201)
    def create_event(
        body: EventDraft,
        identity: Identity = Depends(get_identity),
        service: EventService = Depends(events_service),
    ):
        return service.create(identity, body)

    @app.get("/events")
    def list_events(
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        search_term: Optional[str] = Query(None, alias="searchTerm"),
        last_evaluated_key: Optional[str] = Query(None, alias="lastEvaluatedKey"),
        service: EventService = Depends(events_service),
    ):
        return service.list(start_date, end_date, search_term, last_evaluated_key)

    @app.get("/events/{event_id}")
    def get_event(event_id: str, service: EventService = Depends(events_service)):
        return service.get(event_id)

    @app.put("/events/{event_id}")
    def update_event(
        event_id: str,
        body: EventUpdate,
        identity: Identity = Depends(get_identity),
        service: EventService = Depends(events_service),
    ):
        return service.update(identity, event_id, body)

    @app.delete("/events/{event_id}")
    def cancel_event(
        event_id: str,
        identity: Identity = Depends(get_identity),
        service: EventService = Depends(events_service),
    ):
        return service.cancel(identity, event_id)

    # Participation
    @app.post("/events/{event_id}/join", status_code=201)
    def join_event(
        event_id: str,
        identity: Identity = Depends(get_identity),
        service: ParticipationService = Depends(participation_service),
    ):
        return service.join(identity, event_id)

    @app.post("/events/{event_id}/leave")
    def leave_event(
        event_id: str,
        identity: Identity = Depends(get_identity),
        service: ParticipationService = Depends(participation_service),
    ):
        return service.leave(identity, event_id)

    @app.get("/events/{event_id}/participants")
    def list_participants(
        event_id: str,
        identity: Identity = Depends(get_identity),
        service: ParticipationService = Depends(participation_service),
    ):
        return {"participants": service.list_participants(identity, event_id)}

    # Users
    @app.get("/users/{user_id}")
    def get_user(
        user_id: str,
        identity: Identity = Depends(get_identity),
        service: UserService = Depends(user_service),
    ):
        return service.get(identity, user_id)

    @app.put("/users/{user_id}")
    def update_user(
        user_id: str,
        body: UserUpdate,
        identity: Identity = Depends(get_identity),
        service: UserService = Depends(user_service),
    ):
        return service.update(identity, user_id, body)


app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = Settings()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
