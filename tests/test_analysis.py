import json

import pytest
from unittest.mock import AsyncMock

from memorylane.core.exceptions import AnalysisParseError
from memorylane.services.analysis import (
    ContentAnalysis,
    ContentAnalyzer,
    extract_summary_and_tags,
    extract_video_metadata,
    normalize_emotion_tags,
    parse_analysis_payload,
)
from memorylane.services.prompts import FALLBACK_SUMMARY
from tests.conftest import SAMPLE_SUMMARY

PAYLOAD = {"summary": SAMPLE_SUMMARY, "emotionTags": ["joyful"]}


class TestPayloadParsing:
    def test_plain_object(self):
        assert parse_analysis_payload(PAYLOAD) == PAYLOAD

    def test_data_envelope(self):
        assert parse_analysis_payload({"id": "gen-1", "data": PAYLOAD}) == PAYLOAD

    def test_json_string(self):
        assert parse_analysis_payload(json.dumps(PAYLOAD)) == PAYLOAD

    def test_fenced_json(self):
        text = f"Here you go:\n```json\n{json.dumps(PAYLOAD)}\n```"
        assert parse_analysis_payload(text) == PAYLOAD

    def test_string_inside_envelope(self):
        assert parse_analysis_payload({"data": json.dumps(PAYLOAD)}) == PAYLOAD

    def test_invalid_json(self):
        with pytest.raises(AnalysisParseError):
            parse_analysis_payload("not json at all")

    def test_non_object_json(self):
        with pytest.raises(AnalysisParseError):
            parse_analysis_payload("[1, 2, 3]")

    def test_unsupported_type(self):
        with pytest.raises(AnalysisParseError):
            parse_analysis_payload(42)


class TestSummaryExtraction:
    def test_text_field_accepted(self):
        summary, tags = extract_summary_and_tags({"text": SAMPLE_SUMMARY})
        assert summary == SAMPLE_SUMMARY
        assert tags == []

    def test_short_summary_rejected(self):
        with pytest.raises(AnalysisParseError):
            extract_summary_and_tags({"summary": "Beach.", "emotionTags": ["joyful"]})

    def test_tags_normalized(self):
        assert normalize_emotion_tags([" Joyful", "PLAYFUL", 3, "", "calm", "cozy", "tender"]) == [
            "joyful", "playful", "calm", "cozy",
        ]

    def test_tags_not_a_list(self):
        assert normalize_emotion_tags("joyful") == []


class TestMetadataExtraction:
    def test_metadata_first(self):
        info = {"metadata": {"duration": 12.0, "width": 640}, "duration": 99, "system_metadata": {"duration": 50}}
        assert extract_video_metadata(info) == {"duration": 12.0, "width": 640}

    def test_system_metadata_fallback(self):
        info = {"system_metadata": {"duration": 30.5, "fps": 30}}
        assert extract_video_metadata(info) == {"duration": 30.5, "fps": 30}

    def test_empty(self):
        assert extract_video_metadata(None) == {}

    def test_fields_only_include_present_values(self):
        analysis = ContentAnalysis(summary=SAMPLE_SUMMARY, emotion_tags=["joyful"], source="twelvelabs")
        assert analysis.to_fields() == {"summary": SAMPLE_SUMMARY, "emotionTags": ["joyful"]}


@pytest.mark.asyncio
class TestContentAnalyzer:
    """Test the analysis fallback chain."""

    async def _indexed_video(self, add_video):
        return await add_video({
            "originalName": "beach_trip.mp4",
            "indexingStatus": "indexing",
            "twelveLabsVideoId": "tl-vid-1",
            "twelveLabsIndexId": "idx-1",
        })

    async def test_provider_analysis(self, store, add_video, mock_twelvelabs, mock_generator):
        video_id = await self._indexed_video(add_video)
        analyzer = ContentAnalyzer(store, mock_twelvelabs, mock_generator)

        analysis = await analyzer.analyze(video_id)
        assert analysis.source == "twelvelabs"
        assert analysis.summary == SAMPLE_SUMMARY
        assert analysis.emotion_tags == ["joyful", "playful", "nostalgic"]
        assert analysis.duration == 42.5
        mock_generator.generate.assert_not_called()

    async def test_falls_back_to_filename(self, store, add_video, mock_twelvelabs, mock_generator):
        video_id = await self._indexed_video(add_video)
        mock_twelvelabs.analyze = AsyncMock(side_effect=Exception("analyze unavailable"))
        analyzer = ContentAnalyzer(store, mock_twelvelabs, mock_generator)

        analysis = await analyzer.analyze(video_id)
        assert analysis.source == "generative"
        assert analysis.emotion_tags == ["festive", "joyful"]
        prompt = mock_generator.generate.call_args[0][0]
        assert "beach_trip.mp4" in prompt

    async def test_unparseable_provider_output_falls_back(self, store, add_video, mock_twelvelabs, mock_generator):
        video_id = await self._indexed_video(add_video)
        mock_twelvelabs.analyze = AsyncMock(return_value={"data": "Sorry, I cannot help."})
        analyzer = ContentAnalyzer(store, mock_twelvelabs, mock_generator)

        analysis = await analyzer.analyze(video_id)
        assert analysis.source == "generative"

    async def test_absolute_fallback(self, store, add_video, mock_twelvelabs, mock_generator):
        video_id = await self._indexed_video(add_video)
        mock_twelvelabs.analyze = AsyncMock(side_effect=Exception("boom"))
        mock_twelvelabs.retrieve_video = AsyncMock(side_effect=Exception("boom"))
        mock_generator.generate = AsyncMock(side_effect=Exception("429 rate limit"))
        analyzer = ContentAnalyzer(store, mock_twelvelabs, mock_generator)

        analysis = await analyzer.analyze(video_id)
        assert analysis.summary == FALLBACK_SUMMARY
        assert analysis.emotion_tags == []
        assert analysis.metadata == {}

    async def test_missing_record_still_produces_result(self, store, mock_twelvelabs, mock_generator):
        analyzer = ContentAnalyzer(store, mock_twelvelabs, mock_generator)

        analysis = await analyzer.analyze("missing")
        assert analysis.source == "generative"
        mock_twelvelabs.analyze.assert_not_called()

    async def test_malformed_record_falls_back_without_raising(self, store, add_video, mock_twelvelabs, mock_generator):
        video_id = await add_video({
            "originalName": "beach_trip.mp4",
            "indexingStatus": "indexing",
            "twelveLabsVideoId": "tl-vid-1",
            "duration": "unknown",
        })
        analyzer = ContentAnalyzer(store, mock_twelvelabs, mock_generator)

        analysis = await analyzer.analyze(video_id)
        assert analysis.source == "generative"
        assert analysis.emotion_tags == ["festive", "joyful"]
        mock_twelvelabs.analyze.assert_not_called()
