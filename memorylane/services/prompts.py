import tiktoken
from langchain_core.prompts import PromptTemplate

# Tokenizer for accurate token counting
_encoding = tiktoken.get_encoding("cl100k_base")

# Keeps the chat prompt well inside the model's context window
MAX_VIDEO_CONTEXT_TOKENS = 6000
MAX_HISTORY_TOKENS = 2000

EMOTION_VOCABULARY = (
    "joyful", "nostalgic", "peaceful", "energetic", "heartwarming", "adventurous",
    "tender", "playful", "bittersweet", "triumphant", "cozy", "serene",
    "intimate", "festive", "melancholic", "excited", "relaxed", "loving",
)

FALLBACK_SUMMARY = "A video memory has been saved to your collection."

GENERATION_FAILED_MESSAGE = (
    "I'm having trouble processing your request right now. Please try again in a moment."
)
HIGH_DEMAND_MESSAGE = (
    "I'm currently experiencing high demand. Based on your videos, I found some matches - "
    "you can view them below. Please try your question again in a minute."
)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Truncate text to a maximum number of tokens, preserving sentence boundaries."""
    tokens = _encoding.encode(text)
    if len(tokens) <= max_tokens:
        return text
    truncated = _encoding.decode(tokens[:max_tokens])
    # Try to end at a sentence boundary
    last_period = truncated.rfind('.')
    if last_period > len(truncated) * 0.8:
        return truncated[:last_period + 1]
    return truncated


# ── Content Analysis Prompts ───────────────────────────────────────────────

VIDEO_ANALYSIS_PROMPT = f"""Analyze this video and provide a JSON response with:
1. "summary": A 2-3 sentence description of what happens in the video, including people, actions, setting, and mood. Make it warm and personal.
2. "emotionTags": An array of 2-4 single-word emotion tags that capture the feeling of this video.

Choose emotion tags from: {", ".join(EMOTION_VOCABULARY)}

Respond with ONLY a valid JSON object."""

# Structured-output schema sent alongside VIDEO_ANALYSIS_PROMPT
VIDEO_ANALYSIS_SCHEMA = {
    "type": "json_schema",
    "json_schema": {
        "type": "object",
        "properties": {
            "summary": {"type": "string"},
            "emotionTags": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["summary", "emotionTags"],
    },
}

FILENAME_ANALYSIS_PROMPT = PromptTemplate(
    input_variables=["video_name", "vocabulary"],
    template="""You are analyzing a personal video memory. Based on the video filename "{video_name}", generate:

1. SUMMARY: A 2-3 sentence description suggesting what might be happening in this video (people, actions, setting, mood). Make educated guesses based on the filename but keep it warm and personal.

2. EMOTION_TAGS: 2-4 single-word emotion tags that likely capture the feeling of this video. Choose from: {vocabulary}

Respond with ONLY a valid JSON object (no markdown, no code blocks):
{{
  "summary": "Your 2-3 sentence summary here",
  "emotionTags": ["tag1", "tag2", "tag3"]
}}"""
)

# ── Chat Prompt ────────────────────────────────────────────────────────────

CHAT_PROMPT = PromptTemplate(
    input_variables=["history", "video_context", "message"],
    template="""You are MemoryLane AI, a warm and helpful assistant that helps users explore and reminisce about their personal video memories.

Rules:
1. Only use details from the provided video context (summaries, emotions, transcripts).
2. If you are unsure or the answer is not in the context, say you don't know.
3. Do not mention internal IDs, filenames, or storage URLs.
4. When referencing a video, use its summary or describe it in a friendly way.
5. If the user asks to show/play/open a video, choose the best matching video.
6. Use the emotion tags to understand the mood of videos and help users find videos by feeling.
7. Be conversational and empathetic - these are personal memories.

Conversation so far:
{history}

Video Context:
{video_context}

User Question: {message}

Response:"""
)
