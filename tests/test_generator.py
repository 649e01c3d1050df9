"""
Tests for variant generators.

PillowGenerator renders real images; SubprocessGenerator is exercised with
tiny inline commands so timeouts and exit codes can be checked quickly.
"""
import json
import os
import sys
import tempfile
from unittest.mock import patch

import pytest
from PIL import Image

from media_delivery.delivery_config import DeliverySettings
from media_delivery.exceptions import GenerationFailure, GenerationTimeout
from media_delivery.generator import (
    TEMP_PREFIX,
    PillowGenerator,
    SubprocessGenerator,
    build_generator,
    main,
    parse_memory_limit,
    remove_partial_output,
)


@pytest.fixture()
def original(media_root):
    return str(media_root / "orig" / "2024" / "05" / "photo.jpg")


class TestPillowGenerator:
    """In-process rendering."""

    def test_crop_to_exact_size(self, original, tmp_path):
        target = str(tmp_path / "cache" / "thumb" / "photo.jpg")
        PillowGenerator().generate(original, target, {"width": 40, "height": 40, "mode": "crop", "type": "jpg"})
        with Image.open(target) as img:
            assert img.size == (40, 40)
            assert img.format == "JPEG"

    def test_retina_doubles_size(self, original, tmp_path):
        target = str(tmp_path / "photo.jpg")
        PillowGenerator().generate(original, target, {"width": 40, "height": 40, "retina": 1})
        with Image.open(target) as img:
            assert img.size == (80, 80)

    def test_fit_keeps_aspect_ratio(self, original, tmp_path):
        target = str(tmp_path / "photo.jpg")
        PillowGenerator().generate(original, target, {"width": 60, "mode": "fit"})
        with Image.open(target) as img:
            assert img.size == (60, 40)

    def test_png_output(self, media_root, tmp_path):
        target = str(tmp_path / "icon" / "logo.png")
        PillowGenerator().generate(
            str(media_root / "orig" / "logo.png"), target, {"width": 16, "height": 16, "type": "png"}
        )
        with Image.open(target) as img:
            assert img.format == "PNG"
            assert img.size == (16, 16)

    def test_clip_region_is_cut_first(self, original, tmp_path):
        target = str(tmp_path / "photo.jpg")
        PillowGenerator().generate(
            original, target, {"clip": {"x": 10, "y": 10, "width": 30, "height": 20}}
        )
        with Image.open(target) as img:
            assert img.size == (30, 20)

    def test_blur_and_overlay(self, original, media_root, tmp_path):
        target = str(tmp_path / "photo.jpg")
        PillowGenerator().generate(
            original,
            target,
            {
                "width": 40,
                "height": 40,
                "blur": 4,
                "overlay": str(media_root / "assets" / "lock.png"),
                "overlay_gravity": "southeast",
                "overlay_scale": 0.5,
            },
        )
        with Image.open(target) as img:
            assert img.size == (40, 40)
            assert img.mode == "RGB"

    def test_no_temp_files_left_behind(self, original, tmp_path):
        folder = tmp_path / "out"
        PillowGenerator().generate(original, str(folder / "photo.jpg"), {"width": 10})
        assert os.listdir(folder) == ["photo.jpg"]

    def test_unreadable_original(self, tmp_path):
        broken = tmp_path / "broken.jpg"
        broken.write_bytes(b"not an image")
        target = str(tmp_path / "out.jpg")
        with pytest.raises(GenerationFailure) as exc:
            PillowGenerator().generate(str(broken), target, {})
        assert exc.value.path_cache == target
        assert not os.path.exists(target)

    def test_missing_original(self, tmp_path):
        with pytest.raises(GenerationFailure):
            PillowGenerator().generate(str(tmp_path / "nope.jpg"), str(tmp_path / "out.jpg"), {})


class TestSubprocessGenerator:
    """Child process invocation."""

    def test_build_args(self):
        gen = SubprocessGenerator(command=["render"])
        args = gen.build_args("a.jpg", "b.jpg", {"width": 10, "format": "thumb"})
        assert args[:3] == ["render", "a.jpg", "b.jpg"]
        assert args[3] == "--settings"
        assert json.loads(args[4]) == {"format": "thumb", "width": 10}
        assert args[5:] == ["--temp-prefix", TEMP_PREFIX]

    def test_build_args_carries_memory_limit(self):
        gen = SubprocessGenerator(command=["render"], memory_limit="512M")
        args = gen.build_args("a.jpg", "b.jpg", {}, temp_prefix=".gen-run-")
        assert args[-4:] == ["--temp-prefix", ".gen-run-", "--memory-limit", str(512 * 1024**2)]

    def test_generate_does_not_use_preexec_fn(self, tmp_path):
        gen = SubprocessGenerator(command=[sys.executable, "-c", "pass"], memory_limit="512M")
        with patch("media_delivery.generator.subprocess.run") as run:
            run.return_value.returncode = 0
            gen.generate("a.jpg", str(tmp_path / "b.jpg"), {})
        args, kwargs = run.call_args
        assert "preexec_fn" not in kwargs
        assert "--memory-limit" in args[0]

    def test_default_command_runs_module(self):
        gen = SubprocessGenerator()
        assert gen.command == [sys.executable, "-m", "media_delivery.generator"]

    def test_timeout_maps_to_504(self, tmp_path):
        gen = SubprocessGenerator(
            command=[sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.5
        )
        with pytest.raises(GenerationTimeout) as exc:
            gen.generate("a.jpg", str(tmp_path / "b.jpg"), {})
        assert exc.value.status_code == 504

    def test_timeout_removes_partial_output(self, tmp_path):
        # The child leaves a temp file under its prefix, then hangs
        script = (
            "import os, sys, time; "
            "prefix = sys.argv[sys.argv.index(\"--temp-prefix\") + 1]; "
            "open(os.path.join(os.path.dirname(sys.argv[2]), prefix + \"partial.jpg\"), \"w\").close(); "
            "time.sleep(10)"
        )
        other = tmp_path / ".gen-otherrun-partial.jpg"
        other.write_bytes(b"x")
        gen = SubprocessGenerator(command=[sys.executable, "-c", script], timeout=2)

        with pytest.raises(GenerationTimeout):
            gen.generate("a.jpg", str(tmp_path / "b.jpg"), {})
        assert sorted(os.listdir(tmp_path)) == [".gen-otherrun-partial.jpg"]

    def test_remove_partial_output_matches_prefix_only(self, tmp_path):
        (tmp_path / ".gen-abc-1.jpg").write_bytes(b"x")
        (tmp_path / ".gen-xyz-1.jpg").write_bytes(b"x")
        (tmp_path / "photo.jpg").write_bytes(b"x")
        removed = remove_partial_output(str(tmp_path), ".gen-abc-")
        assert removed == [str(tmp_path / ".gen-abc-1.jpg")]
        assert sorted(os.listdir(tmp_path)) == [".gen-xyz-1.jpg", "photo.jpg"]

    def test_non_zero_exit(self, tmp_path):
        gen = SubprocessGenerator(
            command=[sys.executable, "-c", "import sys; print('boom'); sys.exit(3)"]
        )
        with pytest.raises(GenerationFailure) as exc:
            gen.generate("a.jpg", str(tmp_path / "b.jpg"), {})
        assert "exited with 3" in str(exc.value)
        assert "boom" in str(exc.value)

    def test_missing_command(self, tmp_path):
        gen = SubprocessGenerator(command=[str(tmp_path / "no-such-binary")])
        with pytest.raises(GenerationFailure):
            gen.generate("a.jpg", str(tmp_path / "b.jpg"), {})


class TestHelpers:
    """Memory limits, factory and CLI."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("512M", 512 * 1024**2),
            ("1g", 1024**3),
            ("64k", 64 * 1024),
            ("1048576", 1048576),
            ("-1", None),
            (None, None),
            ("lots", None),
        ],
    )
    def test_parse_memory_limit(self, value, expected):
        assert parse_memory_limit(value) == expected

    def test_build_generator(self):
        assert isinstance(build_generator(DeliverySettings(generator="local")), PillowGenerator)
        gen = build_generator(DeliverySettings(generator_timeout=5, memory_limit="256M"))
        assert isinstance(gen, SubprocessGenerator)
        assert gen.timeout == 5
        assert gen.memory_limit == 256 * 1024**2

    def test_cli_renders_variant(self, original, tmp_path):
        target = str(tmp_path / "out.jpg")
        code = main([original, target, "--settings", json.dumps({"width": 20, "height": 20})])
        assert code == 0
        with Image.open(target) as img:
            assert img.size == (20, 20)

    @pytest.mark.skipif(os.name != "posix", reason="RLIMIT_AS is POSIX only")
    def test_cli_applies_memory_limit(self, original, tmp_path):
        import resource

        target = str(tmp_path / "out.jpg")
        with patch("resource.setrlimit") as setrlimit:
            code = main([original, target, "--memory-limit", "1073741824"])
        assert code == 0
        setrlimit.assert_called_once_with(resource.RLIMIT_AS, (1073741824, 1073741824))

    def test_cli_uses_temp_prefix(self, original, tmp_path):
        target = str(tmp_path / "out.jpg")
        with patch("media_delivery.generator.tempfile.mkstemp", wraps=tempfile.mkstemp) as mkstemp:
            assert main([original, target, "--temp-prefix", ".gen-run42-"]) == 0
        assert mkstemp.call_args.kwargs["prefix"] == ".gen-run42-"
        assert os.listdir(tmp_path) == ["out.jpg"]

    def test_cli_reports_failure(self, tmp_path, capsys):
        code = main([str(tmp_path / "nope.jpg"), str(tmp_path / "out.jpg")])
        assert code == 1
        assert "[error]" in capsys.readouterr().err

    def test_cli_rejects_bad_settings(self, original, tmp_path):
        with pytest.raises(SystemExit):
            main([original, str(tmp_path / "out.jpg"), "--settings", "[1, 2]"])
