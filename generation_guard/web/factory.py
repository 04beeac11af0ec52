"""
Factory for creating the governance web module.
"""

import random
from typing import Optional

from flask import Flask

from generation_guard.config.loader import AppConfig, load_app_config
from generation_guard.config.settings_store import SettingsStore
from generation_guard.core.admission import AdmissionController
from generation_guard.storage.repository import UsageRepository, initialize_schema
from .routes import create_governance_blueprint


def create_controller(app_config: AppConfig, rng: Optional[random.Random] = None) -> AdmissionController:
    """Build an AdmissionController wired from process configuration.

    Uses the SQLite ledger when a database path is configured and the
    in-process ledger otherwise.
    """
    if app_config.settings_path:
        settings_store = SettingsStore.from_file(app_config.settings_path)
    else:
        settings_store = SettingsStore()

    ledger = None
    if app_config.db_path:
        initialize_schema(app_config.db_path)
        ledger = UsageRepository(app_config.db_path)

    return AdmissionController(
        settings_store=settings_store,
        ledger=ledger,
        rng=rng,
        app_config=app_config,
    )


def create_governance_module(
    controller: Optional[AdmissionController] = None,
    app_config: Optional[AppConfig] = None,
) -> dict:
    """Create governance module with controller and routes.

    Args:
        controller: Existing controller (built from app_config when omitted)
        app_config: Process configuration (read from the environment when omitted)

    Returns:
        Dictionary with:
        - controller: AdmissionController instance
        - blueprint: Flask blueprint with governance routes
    """
    if controller is None:
        controller = create_controller(app_config or load_app_config())

    return {
        "controller": controller,
        "blueprint": create_governance_blueprint(controller),
    }


def create_app(controller: Optional[AdmissionController] = None) -> Flask:
    """Create a Flask app serving the governance routes."""
    app = Flask(__name__)
    module = create_governance_module(controller)
    app.register_blueprint(module["blueprint"])
    app.extensions["generation_guard"] = module["controller"]
    return app
