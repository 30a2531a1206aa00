"""
Shared pytest fixtures: an in-memory platform and the services built on it.
"""

import asyncio
import io

import pytest
from PIL import Image

from core.memory_platform import create_memory_platform
from models.file import FileUpload
from models.user import UserRole
from services.registry import Services

DEFAULT_PASSWORD = "password123"


def run(coro):
    """Drive a coroutine to completion from a sync test."""
    return asyncio.run(coro)


def make_user(services: Services, name: str, email: str, role: UserRole = UserRole.EMPLOYEE):
    """Register an account (which creates its profile) and give it a role."""
    result = run(services.auth.register(name, email, DEFAULT_PASSWORD))
    if role != UserRole.EMPLOYEE:
        return run(services.auth.set_role(result.profile.id, role))
    return result.profile


def make_image(width: int, height: int, fmt: str = "JPEG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 120, 40)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def platform():
    return create_memory_platform()


@pytest.fixture
def services(platform):
    return Services(platform)


@pytest.fixture
def employee(services):
    return make_user(services, "Ana Costa", "ana@example.com")


@pytest.fixture
def manager(services):
    return make_user(services, "Bruno Silva", "bruno@example.com", UserRole.MANAGER)


@pytest.fixture
def admin(services):
    return make_user(services, "Carla Reis", "carla@example.com", UserRole.ADMIN)


@pytest.fixture
def receipt_pdf():
    return FileUpload(name="receipt.pdf", mime_type="application/pdf", content=b"%PDF-1.4 receipt")
