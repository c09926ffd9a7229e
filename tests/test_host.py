from pathlib import Path

import pytest
from PIL import Image

from harness_jsolex.bridge.protocol import OperationError
from harness_jsolex.core import host
from harness_jsolex.core.config import BridgeConfig


def test_registries_are_frozen_and_named() -> None:
    builtins = host.builtin_operations()
    steps = host.pipeline_steps()
    assert builtins.frozen and steps.frozen
    assert builtins.names() == ["clahe", "height", "load", "rescale", "save", "sharpen", "width"]
    assert "AUTOCROP" in steps


def test_load_sharpen_rescale_save(tmp_path: Path) -> None:
    src = tmp_path / "in.png"
    Image.new("RGB", (40, 20), (120, 60, 30)).save(src)
    out = tmp_path / "out" / "small.png"
    session = host.create_session(BridgeConfig())
    result = session.execute(
        "img = jsolex.load(src)\n"
        "img = jsolex.sharpen(img, 1.5)\n"
        "img = jsolex.rescale(img, 0.5)\n"
        "jsolex.save(img, out)\n"
        "result = {'processed': img, 'stats': {'w': jsolex.width(img), 'h': jsolex.height(img)}}\n",
        {"src": str(src), "out": str(out)},
    )
    assert out.exists()
    assert Image.open(out).size == (20, 10)
    assert result.metadata == {"stats": {"w": 20, "h": 10}}


def test_autocrop_step_through_call() -> None:
    img = Image.new("L", (10, 10), 0)
    img.paste(255, (2, 3, 6, 8))
    session = host.create_session()
    result = session.execute('result = jsolex.call("AUTOCROP", {"img": img})', {"img": img})
    assert result.value.size == (4, 5)


def test_clahe_keeps_size() -> None:
    img = Image.new("L", (16, 16), 100)
    assert host.clahe(img, 1.0, 4).size == (16, 16)


def test_flip_rejects_unknown_axis() -> None:
    session = host.create_session()
    with pytest.raises(OperationError) as excinfo:
        session.execute('jsolex.funcs.FLIP(img, "diagonal")', {"img": Image.new("L", (2, 2))})
    assert isinstance(excinfo.value.__cause__, host.HostError)


def test_load_missing_file_is_operation_error(tmp_path: Path) -> None:
    session = host.create_session()
    with pytest.raises(OperationError):
        session.execute("jsolex.load(p)", {"p": str(tmp_path / "nope.png")})


def test_describe_handle() -> None:
    assert host.describe_handle(Image.new("RGB", (3, 2))) == {"width": 3, "height": 2, "mode": "RGB"}
    assert host.describe_handle("x") == {}
