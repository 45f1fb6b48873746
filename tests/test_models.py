"""Tests for analysis result and storage record models"""

import pytest
from pydantic import ValidationError

from models.schemas import AnalysisResult, FaceShape, FeatureImpact, SkinTone
from storage.models import FaceAnalysisSummary, SessionSnapshot
from tests.conftest import create_mock_analysis_payload


class TestAnalysisResult:
    """Test AnalysisResult parsing"""

    def test_parses_model_payload(self, analysis_payload):
        result = AnalysisResult.model_validate(analysis_payload)

        assert result.face_shape == FaceShape.OVAL
        assert result.skin_tone == SkinTone.MEDIUM
        assert result.face_shape_label == "계란형"
        assert result.features[0].label == "균형 잡힌 비율"
        assert result.features[0].impact == FeatureImpact.POSITIVE
        assert result.avoid_styles[0].name == "바가지컷"

    def test_serializes_camel_case(self, analysis_result):
        data = analysis_result.model_dump(mode="json", by_alias=True)

        assert data["faceShape"] == "oval"
        assert "upperRatio" in data
        assert "stylingTips" in data

    def test_round_trip_through_stored_json(self, analysis_result):
        restored = AnalysisResult.model_validate_json(analysis_result.model_dump_json(by_alias=True))
        assert restored == analysis_result

    @pytest.mark.parametrize("ratios, expected", [
        ((33, 34, 33), (33, 34, 33)),
        ((33, 33, 33), (33, 34, 33)),
        ((30, 40, 30), (30, 40, 30)),
        ((1, 1, 2), (25, 25, 50)),
        ((0, 0, 0), (33, 34, 33)),
        ((20, 20, 20), (33, 34, 33)),
    ])
    def test_ratios_sum_to_100(self, ratios, expected):
        payload = create_mock_analysis_payload()
        payload.update(upperRatio=ratios[0], middleRatio=ratios[1], lowerRatio=ratios[2])

        result = AnalysisResult.model_validate(payload)

        assert (result.upper_ratio, result.middle_ratio, result.lower_ratio) == expected
        assert sum(expected) == 100

    def test_non_numeric_ratios_fall_back(self):
        payload = create_mock_analysis_payload()
        payload["upperRatio"] = "wide"

        result = AnalysisResult.model_validate(payload)

        assert result.upper_ratio + result.middle_ratio + result.lower_ratio == 100

    def test_unknown_face_shape_rejected(self):
        payload = create_mock_analysis_payload()
        payload["faceShape"] = "triangle"

        with pytest.raises(ValidationError):
            AnalysisResult.model_validate(payload)

    def test_immutable(self, analysis_result):
        with pytest.raises(ValidationError):
            analysis_result.face_shape = FaceShape.ROUND

    def test_recommended_names_keep_list_order(self):
        payload = create_mock_analysis_payload(recommendation_count=3)
        for rec in payload["recommendations"]:
            rec["priority"] = 4 - rec["priority"]

        result = AnalysisResult.model_validate(payload)

        assert result.recommended_names == ["리프컷", "댄디컷", "쉐도우펌"]


class TestStorageModels:

    def test_face_summary_from_analysis(self, analysis_result):
        summary = FaceAnalysisSummary.from_analysis(analysis_result)

        assert summary.face_shape == FaceShape.OVAL
        assert summary.features == ["balanced", "forehead"]

    def test_snapshot_resumable_only_when_complete(self, sample_data_uri, analysis_result):
        assert SessionSnapshot(original_image=sample_data_uri).is_resumable is False
        assert SessionSnapshot(
            original_image=sample_data_uri,
            result_image=sample_data_uri,
            analysis_result=analysis_result,
        ).is_resumable is True
