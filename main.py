from fastapi import FastAPI, HTTPException, Depends, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi import status
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel
from typing import Optional
from jose import JWTError
import logging
import sqlite3
from contextlib import asynccontextmanager

import socketio

import config
import database
from models import User
from manager import EventManager, AttendanceManager
from database import Database, get_database
from queries import EventFilter
from exceptions import EventHubError
from auth import (
    get_current_user, create_access_token, create_refresh_token, decode_token,
    hash_password, verify_password, oauth2_scheme,
)
from realtime import EventBroadcaster, create_socket_server
from uploads import AssetHostClient, get_asset_host, read_image
from utils import new_id

# Logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# FastAPI App
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if database._database is not None:
        logger.info("Closing database connection")
        database._database.close()
        database._database = None

app = FastAPI(title="EventHub API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def get_event_manager(db: Database = Depends(get_database)) -> EventManager:
    return EventManager(db)

def get_attendance_manager(events: EventManager = Depends(get_event_manager)) -> AttendanceManager:
    return AttendanceManager(events)

# Realtime
sio = create_socket_server()
broadcaster = EventBroadcaster(sio, lambda: EventManager(get_database()))

# Served by uvicorn: `uvicorn main:asgi_app`
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)

# -------------------------------
# Error rendering
# -------------------------------
@app.exception_handler(EventHubError)
async def eventhub_error_handler(request: Request, exc: EventHubError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {str(exc)}", exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})

# -------------------------------
# Schemas
# -------------------------------
class EventCreate(BaseModel):
    name: str
    description: str = ""
    date: str
    time: str = ""
    location: str = ""
    category: str
    capacity: int
    price: float = 0.0
    image: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Late Night Jazz",
                "description": "A trio playing standards until midnight",
                "date": "2025-05-01T20:00:00",
                "time": "8:00 PM",
                "location": "Blue Room, Main Street",
                "category": "Concert",
                "capacity": 80,
                "price": 15.0,
                "image": None
            }
        }

class UserRegister(BaseModel):
    name: str
    email: str
    password: str

class UserLogin(BaseModel):
    email: str
    password: str

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    user: dict

def _tokens_for(user: User) -> dict:
    return {
        "access_token": create_access_token(data={"sub": user.email}),
        "refresh_token": create_refresh_token(data={"sub": user.email}),
        "user": user.public().to_dict(),
    }

# -------------------------------
# Auth Routes
# -------------------------------
@app.post("/api/auth/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED, summary="Register a new user")
def register(user: UserRegister, db: Database = Depends(get_database)):
    """Register a new user and log them in."""
    if db.get_user_by_email(user.email):
        raise HTTPException(status_code=400, detail="User already exists")
    user_obj = User(new_id(), user.name, user.email, hash_password(user.password))
    db.add_user(user_obj)
    logger.info(f"User {user.email} registered")
    return _tokens_for(user_obj)

@app.post("/api/auth/login", response_model=TokenResponse, summary="Login and receive access/refresh tokens")
def login(user: UserLogin, db: Database = Depends(get_database)):
    """Authenticate user and return access and refresh tokens."""
    db_user = db.get_user_by_email(user.email)
    if not db_user or not verify_password(user.password, db_user["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    logger.info(f"User {user.email} logged in")
    return _tokens_for(User(**db_user))

@app.post("/api/auth/refresh", response_model=dict, summary="Refresh access token")
def refresh(token: str = Depends(oauth2_scheme), db: Database = Depends(get_database)):
    credentials_exception = HTTPException(
        status_code=401,
        detail="Invalid refresh token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        token_data = decode_token(token, "refresh")
    except JWTError as e:
        logger.error(f"JWTError: {str(e)}")
        raise credentials_exception
    if db.get_user_by_email(token_data.email) is None:
        raise credentials_exception
    logger.info(f"Token refreshed for {token_data.email}")
    return {"access_token": create_access_token(data={"sub": token_data.email})}

@app.get("/api/auth/me", response_model=dict, summary="Current user")
def me(current_user: User = Depends(get_current_user)):
    return current_user.public().to_dict()

# -------------------------------
# Event Routes
# -------------------------------
@app.get("/health", response_model=dict, summary="Health check")
def health(db: Database = Depends(get_database)):
    try:
        db.ping()
        return {"status": "healthy", "database": "connected"}
    except sqlite3.Error as e:
        logger.error(f"Health check failed: {str(e)}")
        return {"status": "unhealthy", "database": "disconnected"}

@app.get("/api/events", response_model=list, summary="List events")
def list_events(category: Optional[str] = None, date: Optional[str] = None, search: Optional[str] = None,
                manager: EventManager = Depends(get_event_manager)):
    """List events matching the category, date bucket and search filters, earliest first."""
    try:
        events = manager.list_events(EventFilter(category=category, date=date, search=search))
    except sqlite3.Error as e:
        logger.error(f"Error fetching events: {str(e)}")
        raise HTTPException(status_code=500, detail="Error fetching events")
    return [e.to_dict() for e in events]

@app.post("/api/events/upload", response_model=dict, summary="Upload an event image")
async def upload_image(image: Optional[UploadFile] = File(None),
                       current_user: User = Depends(get_current_user),
                       asset_host: AssetHostClient = Depends(get_asset_host)):
    """Forward an image to the asset host and return its public URL."""
    content, content_type = await read_image(image)
    image_url = await asset_host.upload_image(content, content_type)
    logger.info(f"Image uploaded by {current_user.id}: {image_url}")
    return {"imageUrl": image_url}

@app.get("/api/events/{event_id}", response_model=dict, summary="Get an event")
def get_event(event_id: str, manager: EventManager = Depends(get_event_manager)):
    try:
        event = manager.get_event(event_id)
    except sqlite3.Error as e:
        logger.error(f"Error fetching event {event_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Error fetching event")
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event.to_dict()

@app.post("/api/events", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Create a new event")
def create_event(event: EventCreate, current_user: User = Depends(get_current_user),
                 manager: EventManager = Depends(get_event_manager)):
    """Create a new event; the creator is its first attendee."""
    try:
        evt = manager.create_event(creator_id=current_user.id, **event.model_dump())
    except sqlite3.Error as e:
        logger.error(f"Error creating event: {str(e)}")
        raise HTTPException(status_code=500, detail="Error creating event")
    return evt.to_dict()

@app.post("/api/events/{event_id}/attend", response_model=dict, summary="Attend an event")
async def attend_event(event_id: str, current_user: User = Depends(get_current_user),
                       attendance: AttendanceManager = Depends(get_attendance_manager)):
    """Join an event and push the new attendee list to its room."""
    try:
        event = await run_in_threadpool(attendance.join, event_id, current_user.id)
    except sqlite3.Error as e:
        logger.error(f"Error attending event {event_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Error attending event")
    await broadcaster.broadcast_attendees(event.id, event.attendees)
    return event.to_dict()
