from typing import Optional, List, Dict, Any

SYSTEM_PROMPT_GENERATE = (
    "You are an expert image analyzer. Your task is to analyze images and generate descriptive "
    "key-value tags that categorize and describe the content. Return your analysis as structured "
    "key-value pairs in JSON format with confidence scores between 0 and 1."
)

SYSTEM_PROMPT_REQUESTED = (
    "You are an expert image analyzer. Your task is to analyze images and provide specific "
    "information requested by the user. Return your analysis as structured key-value pairs in "
    "JSON format with confidence scores between 0 and 1."
)

SYSTEM_PROMPT_QUERY = (
    "You convert free-text image search queries into structured key-value tags. "
    "Only use the tag keys you are given. Return JSON with confidence scores between 0 and 1."
)

MULTI_VALUE_RULES = """

CRITICAL RULE: NEVER use comma-separated lists in tag values. Each distinct item MUST be a separate tag object.

CORRECT - If you see Woody and Buzz:
[{"key": "character", "value": "woody", "confidence": 0.95}, {"key": "character", "value": "buzz", "confidence": 0.9}]

INCORRECT - DO NOT DO THIS:
[{"key": "character", "value": "woody, buzz", "confidence": 0.95}]
[{"key": "character", "value": "woody and buzz", "confidence": 0.95}]

This applies to ALL multi-value situations: multiple characters, actors, colors, objects, locations, etc. Always create separate tag entries with the same key."""

FORMATTING_RULES = """

SPECIAL TAG FORMATTING RULES:

1. QUANTITY tags - Values must be NUMBERS ONLY (no text):
   CORRECT: {"key": "quantity", "value": "3", "confidence": 0.95}
   WRONG: {"key": "quantity", "value": "3 items", "confidence": 0.95}
   WRONG: {"key": "quantity", "value": "three", "confidence": 0.95}

2. SIZE tags with multiple dimensions - SPLIT into separate dimension tags:
   Items taller than wide should have height > width; items wider than tall should have width > height.
   CORRECT (for item 10cm tall, 5cm wide):
      [{"key": "height", "value": "10cm", "confidence": 0.9},
       {"key": "width", "value": "5cm", "confidence": 0.9}]
   WRONG: {"key": "size", "value": "10x5", "confidence": 0.9}
   WRONG: {"key": "dimensions", "value": "10cm x 5cm", "confidence": 0.9}"""


def tag_items_schema() -> Dict[str, Any]:
    return {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {
                "key": {"type": "string", "description": "The tag key/name"},
                "value": {"type": "string", "description": "The tag value"},
                "confidence": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 1,
                    "description": "Confidence score for this tag"
                },
            },
            "required": ["key", "value", "confidence"],
        },
    }


class PromptBuilder:
    """
    Builds {system, user, schema} prompt dicts for the vision adapter.

    The schema is passed to the model as a JSON-schema response constraint, so
    every variant asks for the same {key, value, confidence} triples.
    """

    def build_prompt(self, description: Optional[str] = None, requested_keys: Optional[List[str]] = None) -> Dict[str, Any]:
        return {
            "system": SYSTEM_PROMPT_REQUESTED if requested_keys else SYSTEM_PROMPT_GENERATE,
            "user": self._build_user_prompt(description, requested_keys),
            "schema": self.build_response_schema(),
        }

    def build_batch_prompt(self, image_ids: List[str]) -> Dict[str, Any]:
        """
        Prompt for several images in one request. Each image part is preceded by a
        text part naming its identifier; the model must echo it back as image_id.
        """
        user = (
            f"You will receive {len(image_ids)} images. Each image is preceded by a line of the form "
            "'Image identifier: <id>'. Analyze every image independently and "
            "generate descriptive tags as key-value pairs for it. Examples: "
            '{"category": "pokemon card", "condition": "mint", "character": "charizard"} or '
            '{"type": "clothing", "color": "blue", "item": "jacket"}.'
            "\n\nReturn one entry per image in the 'images' array. Copy each image's identifier "
            "exactly into 'image_id'. Do not invent identifiers and do not merge images."
            "\n\nFor each tag, provide a confidence score between 0 and 1 indicating how certain you are about the value."
        )
        user += MULTI_VALUE_RULES + FORMATTING_RULES
        return {
            "system": SYSTEM_PROMPT_GENERATE,
            "user": user,
            "schema": self.build_batch_response_schema(),
        }

    def build_query_prompt(self, query: str, tag_keys: List[str], tag_definitions: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        lines = []
        for key in tag_keys:
            definition = (tag_definitions or {}).get(key)
            lines.append(f"- {key}: {definition}" if definition else f"- {key}")
        user = (
            "Extract structured tags from this image search query.\n\n"
            f"Query: {query}\n\n"
            "Allowed tag keys (use ONLY these keys, spelled exactly as listed):\n"
            + "\n".join(lines)
            + "\n\nOnly include keys the query actually mentions or clearly implies. "
            "If nothing matches, return an empty tags array. "
            "Give each tag a confidence score between 0 and 1."
        )
        return {
            "system": SYSTEM_PROMPT_QUERY,
            "user": user,
            "schema": self.build_response_schema(),
        }

    def _build_user_prompt(self, description: Optional[str], requested_keys: Optional[List[str]]) -> str:
        prompt = "Analyze this image and "
        if requested_keys:
            prompt += "provide values for the following requested information: " + ", ".join(requested_keys) + "."
        else:
            prompt += (
                "generate descriptive tags as key-value pairs. Examples: "
                '{"category": "pokemon card", "condition": "mint", "character": "charizard"} or '
                '{"type": "clothing", "color": "blue", "item": "jacket"}.'
            )

        if description:
            prompt += f"\n\nUser provided context: {description}"

        prompt += "\n\nFor each tag, provide a confidence score between 0 and 1 indicating how certain you are about the value."
        return prompt + MULTI_VALUE_RULES + FORMATTING_RULES

    @staticmethod
    def build_response_schema() -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {"tags": tag_items_schema()},
            "required": ["tags"],
        }

    @staticmethod
    def build_batch_response_schema() -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "images": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "image_id": {"type": "string", "description": "Identifier of the image, copied verbatim"},
                            "tags": tag_items_schema(),
                        },
                        "required": ["image_id", "tags"],
                    },
                },
            },
            "required": ["images"],
        }
