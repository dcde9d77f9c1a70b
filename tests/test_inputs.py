# Tests for request schemas and model-input defaults

import pydantic
import pytest

from diffusion_studio.inputs import (
    DEFAULT_GUIDANCE_SCALE,
    DEFAULT_NUM_INFERENCE_STEPS,
    DEFAULT_SCHEDULER,
    KIND_INPAINTING,
    KIND_TEXT_TO_IMAGE,
    MAX_SEED,
    InpaintingInput,
    TextToImageInput,
    build_model_input,
    ensure_data_uri,
    missing_fields,
)


class TestMissingFields:
    """Absent, null and empty-string values all count as missing"""

    def test_all_present(self):
        raw = {"image": "a", "mask": "b", "prompt": "c"}
        assert missing_fields(raw, InpaintingInput.REQUIRED_FIELDS) == []

    def test_absent_null_and_empty(self):
        raw = {"image": None, "prompt": ""}
        assert missing_fields(raw, ["image", "mask", "prompt"]) == ["image", "mask", "prompt"]

    def test_none_input(self):
        assert missing_fields(None, ["prompt"]) == ["prompt"]

    def test_zero_is_not_missing(self):
        assert missing_fields({"seed": 0}, ["seed"]) == []


class TestEnsureDataUri:
    def test_wraps_raw_base64(self):
        assert ensure_data_uri("iVBORw0KGgo") == "data:image/png;base64,iVBORw0KGgo"

    def test_keeps_existing_data_uri(self):
        value = "data:image/jpeg;base64,/9j/4AAQ"
        assert ensure_data_uri(value) == value

    def test_keeps_urls(self):
        assert ensure_data_uri("https://example.com/a.png") == "https://example.com/a.png"


class TestTextToImageDefaults:
    def test_defaults_applied(self):
        result = build_model_input(KIND_TEXT_TO_IMAGE, {"prompt": "a red fox"})
        assert result["prompt"] == "a red fox"
        assert result["negative_prompt"] == ""
        assert result["width"] == 512
        assert result["height"] == 512
        assert result["num_inference_steps"] == DEFAULT_NUM_INFERENCE_STEPS
        assert result["guidance_scale"] == DEFAULT_GUIDANCE_SCALE
        assert 0 <= result["seed"] <= MAX_SEED

    def test_explicit_values_kept(self):
        result = build_model_input(
            KIND_TEXT_TO_IMAGE,
            {"prompt": "p", "width": 768, "height": 1024, "num_inference_steps": 40,
             "guidance_scale": 3.5, "seed": 0, "negative_prompt": "blurry"},
        )
        assert result["width"] == 768
        assert result["height"] == 1024
        assert result["num_inference_steps"] == 40
        assert result["guidance_scale"] == 3.5
        assert result["seed"] == 0
        assert result["negative_prompt"] == "blurry"

    def test_unknown_keys_pass_through(self):
        result = build_model_input(KIND_TEXT_TO_IMAGE, {"prompt": "p", "aspect_ratio": "16:9"})
        assert result["aspect_ratio"] == "16:9"

    def test_to_model_input_does_not_touch_submitted_dict(self):
        raw = {"prompt": "p"}
        build_model_input(KIND_TEXT_TO_IMAGE, raw)
        assert raw == {"prompt": "p"}


class TestInpaintingDefaults:
    def test_images_normalised_and_scheduler_default(self):
        result = build_model_input(
            KIND_INPAINTING, {"image": "AAAA", "mask": "BBBB", "prompt": "a cat"}
        )
        assert result["image"] == "data:image/png;base64,AAAA"
        assert result["mask"] == "data:image/png;base64,BBBB"
        assert result["scheduler"] == DEFAULT_SCHEDULER
        assert result["num_inference_steps"] == DEFAULT_NUM_INFERENCE_STEPS
        assert "width" not in result


class TestBuildModelInputErrors:
    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown prediction kind"):
            build_model_input("upscale", {"prompt": "p"})

    def test_missing_prompt_raises(self):
        with pytest.raises(pydantic.ValidationError):
            build_model_input(KIND_TEXT_TO_IMAGE, {})

    def test_bad_type_raises(self):
        with pytest.raises(pydantic.ValidationError):
            TextToImageInput.model_validate({"prompt": "p", "width": "wide"})
