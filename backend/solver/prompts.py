"""Prompt construction for the reasoning model.

The JSON shape requested here is what the history viewer and the progress
ledger read back, so its field names and nesting must not drift.
"""
from backend.domain.models import SolveRequest

RESPONSE_FORMAT = """Respond with JSON in this format:
{
  "steps": [
    {
      "step": 1,
      "description": "Clear explanation of this step",
      "formula": "Mathematical formula used (if applicable)",
      "result": "Result of this step (if applicable)"
    }
  ],
  "explanation": "Overall explanation of the solution approach",
  "concepts": ["concept1", "concept2"],
  "finalAnswer": "The final answer",
  "confidence": 95
}

Rules:
1. "steps" is ordered; number them from 1
2. "confidence" is an integer from 0 to 100
3. Only return valid JSON, no other text"""

IMAGE_MIME = "image/jpeg"


def image_data_uri(image_data: str) -> str:
    return f"data:{IMAGE_MIME};base64,{image_data}"


def build_system_prompt(request: SolveRequest) -> str:
    if request.image_data:
        intro = (
            f"You are an expert mathematics tutor specializing in {request.category}. "
            "Analyze the mathematical problem in the image and provide a detailed "
            "step-by-step solution."
        )
    else:
        intro = (
            f"You are an expert mathematics tutor specializing in {request.category}. "
            "Provide detailed step-by-step solutions with clear explanations."
        )
    return f"{intro}\n\n{RESPONSE_FORMAT}"


def build_messages(request: SolveRequest) -> list[dict]:
    """Build the chat message list for one solve request."""
    system = {"role": "system", "content": build_system_prompt(request)}

    if not request.image_data:
        text = (
            f"Solve this {request.category} problem "
            f"(difficulty {request.difficulty}/5): {request.problem_text}"
        )
        return [system, {"role": "user", "content": text}]

    # Text is optional context next to the image
    text = f"Please solve this {request.category} problem with difficulty level {request.difficulty}/5."
    if request.problem_text.strip():
        text += f" Additional context: {request.problem_text.strip()}"

    return [
        system,
        {
            "role": "user",
            "content": [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": image_data_uri(request.image_data)}},
            ],
        },
    ]


def build_payload(request: SolveRequest, model: str, max_tokens: int) -> dict:
    """Request body for a strict-JSON chat completion."""
    return {
        "model": model,
        "messages": build_messages(request),
        "response_format": {"type": "json_object"},
        "max_completion_tokens": max_tokens,
    }
