"""Galleria API routers package."""

from . import albums
from . import photos
from . import admin
