"""
Main routes for the Protect live viewer.
Serves the viewer page; everything it talks to lives under /api.
"""
from flask import Blueprint, render_template
from flask_login import current_user

main_bp = Blueprint('main', __name__)


@main_bp.route('/')
def index():
    """Viewer page: login form, camera list and player"""
    return render_template('index.html', signed_in=current_user.is_authenticated)
