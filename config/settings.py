"""
Configuration settings for the Flask application.
This module contains all configuration classes for different environments.

Delivery policy (formats, clients, suffixes, overlays, folders, fallbacks) is
not stored here: it lives in the YAML file named by MEDIA_DELIVERY_CONFIG, or
in a MEDIA_DELIVERY mapping supplied by the host application.
"""
import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    """
    Base configuration class containing common settings.

    This class defines the default configuration that other
    environment-specific classes will inherit from.
    """

    SECRET_KEY = (
        os.environ.get("SECRET_KEY") or "your-super-secret-key-change-in-production"
    )

    # Flask Configuration
    DEBUG = os.environ.get("FLASK_DEBUG", "False").lower() == "true"
    HOST = os.environ.get("FLASK_HOST", "0.0.0.0")
    PORT = int(os.environ.get("FLASK_PORT", 5000))

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Delivery configuration: YAML path (relative paths resolve under instance/)
    MEDIA_DELIVERY_CONFIG = os.environ.get("MEDIA_DELIVERY_CONFIG") or "delivery.yaml"
    # Optional mapping that replaces the YAML file entirely
    MEDIA_DELIVERY = None
    # Optional VariantGenerator instance overriding settings.generator
    MEDIA_DELIVERY_GENERATOR = None
    # Optional callable(id) -> Resource used for clipping/focal point lookups
    MEDIA_DELIVERY_RESOURCE_LOADER = None

    # Served files: let browsers revalidate rather than cache blindly
    SEND_FILE_MAX_AGE_DEFAULT = int(os.environ.get("SEND_FILE_MAX_AGE_DEFAULT", 0))


class DevelopmentConfig(Config):
    """
    Development environment configuration.

    Debug mode with verbose logging.
    """

    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")


class ProductionConfig(Config):
    """
    Production environment configuration.

    Delivered variants are immutable for a given cache path, so allow
    browsers to keep them for a day.
    """

    DEBUG = False
    SEND_FILE_MAX_AGE_DEFAULT = int(os.environ.get("SEND_FILE_MAX_AGE_DEFAULT", 86400))


class TestingConfig(Config):
    """
    Testing environment configuration.

    File logging is disabled; tests provide MEDIA_DELIVERY themselves.
    """

    TESTING = True
    DEBUG = True
