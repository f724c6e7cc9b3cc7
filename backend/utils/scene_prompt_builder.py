def create_description_request(camera_control: str) -> str:
    """
    Instruction sent alongside the uploaded image to the vision model.
    """
    return f"""Create a cinematic description of this interior scene for video animation.
Use natural movement only - such as light flicker, curtain sway, tree motion, or shifting shadows.
Camera movement should follow this instruction: "{camera_control}".
Do not alter the structure of the space. Maintain realism and elegance."""


def create_fallback_prompt(camera_control: str) -> str:
    return f"A realistic scene with {camera_control} camera movement and natural ambient motion."


def clamp_prompt(prompt: str, max_chars: int) -> str:
    """Trim a prompt to the length the prediction service accepts."""
    prompt = " ".join((prompt or "").split())
    if len(prompt) <= max_chars:
        return prompt
    return prompt[:max_chars].rstrip()
