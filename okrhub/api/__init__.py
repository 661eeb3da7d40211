# Package
from flask import Blueprint

from okrhub.logging_config import get_logger

logger = get_logger(__name__)

okrhub_bp = Blueprint("okrhub", __name__)

from okrhub.api import routes
