"""
Blueprints for the Protect live viewer.
"""
from .main import main_bp
from .api import api_bp
