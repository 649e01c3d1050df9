import os

import pytest
from PIL import Image

from config.settings import TestingConfig
from media_delivery import create_app
from media_delivery.delivery_config import build_delivery_config
from media_delivery.extension import MediaDelivery

# Fixed "now" used by every test that builds or checks signatures
NOW = 1_700_000_000

SECRETS = {"website": "website-secret", "partner": "partner-secret"}


class FakeResource:
    """Minimal image owned by the host application."""

    def __init__(
        self,
        id=42,
        file="2024/05/photo.jpg",
        blurred=False,
        watermarked=False,
        clipping=None,
        focal=None,
    ):
        self.id = id
        self.file = file
        self.blurred = blurred
        self.watermarked = watermarked
        self.clipping = clipping or {}
        self.focal = focal
        self.actors = []

    def has_clipping(self, format):
        return format in self.clipping

    def get_clipping(self, format):
        return self.clipping[format]

    def has_focal_point(self):
        return self.focal is not None

    def get_focal_point(self):
        return self.focal

    def use_blurred_format(self, actor):
        self.actors.append(actor)
        return self.blurred

    def use_watermarked_format(self, actor):
        self.actors.append(actor)
        return self.watermarked


class FakeVideo:
    def __init__(self, id=7, file="clips/intro.mp4"):
        self.id = id
        self.file = file


class RecordingGenerator:
    """Writes a placeholder file and remembers every call."""

    def __init__(self, produce=True):
        self.produce = produce
        self.calls = []

    def generate(self, path_orig, path_cache, settings):
        self.calls.append((path_orig, path_cache, dict(settings)))
        if not self.produce:
            return
        os.makedirs(os.path.dirname(path_cache), exist_ok=True)
        with open(path_cache, "wb") as fh:
            fh.write(b"variant:" + os.path.basename(path_orig).encode())


def make_image(path, size=(120, 80), color=(200, 30, 30), mode="RGB"):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    Image.new(mode, size, color).save(path)
    return path


def build_settings(root):
    """Delivery configuration mapping with every folder under ``root``."""
    root = str(root)
    return {
        "settings": {
            "route": "/media/image",
            "video_route": "/media/video",
            "duration": 600,
            "generator": "local",
        },
        "clients": {
            "website": {"secret": SECRETS["website"], "default": True},
            "partner": {"secret": SECRETS["partner"]},
        },
        "formats": {
            "thumb": {
                "default": True,
                "restricted": True,
                "blurred": True,
                "width": 40,
                "height": 40,
                "mode": "crop",
            },
            "preview": {"watermarked": True, "width": 60, "mode": "fit"},
            "icon": {"restricted": True, "type": "png", "width": 16, "height": 16},
        },
        "suffixes": {
            "retina": {"format": "-retina", "file": "-retina"},
            "blurred": {"format": "-blurred", "file": "-blurred"},
            "watermarked": {"format": "-wm", "file": "-watermarked"},
        },
        "overlays": {
            "blurred": {"blur": 4, "file": os.path.join(root, "assets", "lock.png"), "gravity": "center", "scale": 0.5},
            "watermarked": {"file": os.path.join(root, "assets", "mark.png"), "gravity": "southeast", "scale": 0.25},
        },
        "folders": {
            "orig": os.path.join(root, "orig"),
            "cache": os.path.join(root, "cache"),
            "video": os.path.join(root, "video"),
        },
        "fallbacks": {
            "403": os.path.join(root, "assets", "fallback-403.jpg"),
            "404": os.path.join(root, "assets", "fallback-404.jpg"),
            "412": os.path.join(root, "assets", "fallback-412.jpg"),
        },
    }


@pytest.fixture()
def media_root(tmp_path):
    """Originals, fallbacks, overlays and a video on disk."""
    make_image(str(tmp_path / "orig" / "2024" / "05" / "photo.jpg"))
    make_image(str(tmp_path / "orig" / "logo.png"), size=(32, 32), mode="RGBA", color=(0, 0, 255, 255))
    for status, color in (("403", (255, 0, 0)), ("404", (0, 255, 0)), ("412", (0, 0, 255))):
        make_image(str(tmp_path / "assets" / f"fallback-{status}.jpg"), size=(50, 50), color=color)
    make_image(str(tmp_path / "assets" / "lock.png"), size=(20, 20), mode="RGBA", color=(255, 255, 255, 128))
    make_image(str(tmp_path / "assets" / "mark.png"), size=(20, 10), mode="RGBA", color=(0, 0, 0, 128))
    video = tmp_path / "video" / "clips" / "intro.mp4"
    video.parent.mkdir(parents=True)
    video.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    return tmp_path


@pytest.fixture()
def delivery_settings(media_root):
    return build_settings(media_root)


@pytest.fixture()
def delivery_config(delivery_settings):
    return build_delivery_config(delivery_settings)


@pytest.fixture()
def generator():
    return RecordingGenerator()


@pytest.fixture()
def delivery(delivery_config, generator, media_root):
    return MediaDelivery(
        delivery_config, base_dir=str(media_root), generator=generator, clock=lambda: NOW
    )


@pytest.fixture()
def resource():
    return FakeResource()


@pytest.fixture()
def app(delivery_settings, media_root, monkeypatch):
    monkeypatch.setenv("MEDIA_DELIVERY_INSTANCE_PATH", str(media_root / "instance"))
    flask_app = create_app(
        TestingConfig,
        {
            "MEDIA_DELIVERY": delivery_settings,
        },
    )
    yield flask_app


@pytest.fixture()
def client(app):
    return app.test_client()
