from PIL import Image

from harness_jsolex.bridge.results import Outputs, ResultExtractor
from harness_jsolex.bridge.values import ValueMarshaler


def _extractor(**kwargs) -> ResultExtractor:  # noqa: ANN003
    return ResultExtractor(ValueMarshaler((Image.Image,)), **kwargs)


def test_structured_result_splits_primary_and_metadata() -> None:
    img = Image.new("L", (2, 2))
    result = _extractor().extract({"result": {"processed": img, "stats": {"min": 1, "max": 9}, "quality": 0.95}})
    assert result.present and result.structured
    assert result.value is img
    assert result.metadata == {"stats": {"min": 1, "max": 9}, "quality": 0.95}


def test_stats_and_quality_are_optional() -> None:
    result = _extractor().extract({"result": {"processed": 1}})
    assert result.structured
    assert result.value == 1
    assert result.metadata == {}


def test_structured_without_primary_key() -> None:
    result = _extractor().extract({"result": {"stats": {"n": 1}}})
    assert result.structured
    assert result.value is None
    assert result.metadata == {"stats": {"n": 1}}


def test_plain_mapping_is_scalar() -> None:
    result = _extractor().extract({"result": {"other": 1}})
    assert result.present and not result.structured
    assert result.value == {"other": 1}


def test_sequences_are_not_flattened() -> None:
    result = _extractor().extract({"result": [[1, 2], [3]]})
    assert result.value == [[1, 2], [3]]


def test_unassigned_slot_is_absent() -> None:
    result = _extractor().extract({"other": 1})
    assert not result.present
    assert result.value is None


def test_configurable_keys_and_slot() -> None:
    extractor = _extractor(result_keys=frozenset({"image", "notes"}), primary_key="image", slot="out")
    result = extractor.extract({"out": {"image": 1, "notes": "ok"}})
    assert result.value == 1
    assert result.metadata == {"notes": "ok"}


def test_outputs_are_collected() -> None:
    outputs = Outputs()
    outputs.sharpness = 0.4
    assert outputs.missing is None
    result = _extractor().extract({}, outputs)
    assert not result.present
    assert result.outputs == {"sharpness": 0.4}
