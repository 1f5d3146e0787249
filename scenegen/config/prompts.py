"""LLM prompt templates for the extraction stages."""

# Common instruction to suppress thinking and ensure JSON-only output
# Note: curly braces must be escaped as {{ }} for LangChain templates
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY a valid JSON object.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- Start your response directly with the opening brace
- No text before or after the JSON."""

ROLE_EXTRACTION_SYSTEM_PROMPT = """You are an expert literary analyst. Your task is to list every character who appears in a story.

RULES:
1. Include people and personified beings that act or speak; skip places and objects
2. Use the name the story uses most often; merge nicknames into one character
3. gender is one of: male, female, unknown
4. character is a one-sentence personality summary drawn from the text
5. appearance describes looks, clothing and age so an illustrator can draw them consistently
6. If the text does not describe something, leave the field as an empty string - do not invent
""" + JSON_ONLY_INSTRUCTION

ROLE_EXTRACTION_USER_PROMPT = """List the characters in this story.

STORY:
---
{text}
---

Respond with ONLY this JSON structure (no other text):
{{
  "roles": [
    {{
      "name": "Character name",
      "gender": "male|female|unknown",
      "character": "Personality summary",
      "appearance": "Visual description"
    }}
  ]
}}"""

SCENE_EXTRACTION_SYSTEM_PROMPT = """You are a storyboard writer. Your task is to break one chapter of a story into consecutive scenes.

RULES:
1. A scene is a continuous moment in one place; start a new scene when place, time or focus changes
2. Keep scenes in the order they happen in the chapter
3. Each scene's content retells that part of the chapter in 1-4 sentences suitable for narration
4. Every part of the chapter must belong to some scene; do not skip events
""" + JSON_ONLY_INSTRUCTION

SCENE_EXTRACTION_USER_PROMPT = """Split this chapter into scenes.

CHAPTER:
---
{chapter_text}
---

Respond with ONLY this JSON structure (no other text):
{{
  "scenes": [
    {{
      "content": "Narration for the scene"
    }}
  ]
}}"""
