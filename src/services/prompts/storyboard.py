"""Storyboard and image prompt templates."""

CINEMATIC_STYLE = (
    "Cinematic movie storyboard, ultra-realistic production still, "
    "anamorphic lens, filmic grain, motivated lighting."
)

SCENE_PARTITIONER = """You are a veteran film director breaking a {genre} script into storyboard frames.

Split the script below into consecutive frames. For each frame provide:
1. "title": a short frame title.
2. "prompt": a self-contained storyboard image prompt (subject, action, setting, lens, lighting).
3. "scriptSegment": the exact passage of the script this frame covers, copied VERBATIM.
4. "characterId" / "environmentId": the id of the featured character and environment from the manifest below, or omit when none applies.
5. "shotType": the camera framing (e.g. Extreme Wide, Wide, Medium, Over-the-Shoulder, Close-Up, Extreme Close-Up, Low Angle, High Angle, POV).
6. "directorsBrief": emotionalArc, lightingScheme, cameraLogic, pacing.

CRITICAL RULES:
- scriptSegment values must be contiguous, in order, and their concatenation must reproduce the full script exactly. Do not skip, paraphrase, or repeat text.
- Vary shotType from frame to frame for visual variety; never use the same framing twice in a row.
- Tone, lighting, and pacing choices must suit the {genre} genre.

MANIFEST CHARACTERS:
{characters}

MANIFEST ENVIRONMENTS:
{environments}

SCRIPT:
<<<
{script}
>>>"""

FRAME_GENERATION = "{style} {shot}{emotion}{instruction}"

FRAME_EDIT_GLOBAL = (
    "{style} Directorial adjustment for this frame: {instruction}. "
    "Maintain cinematic continuity, character likeness, and environment structure."
)

FRAME_EDIT_LOCALIZED = (
    "{style} Directorial adjustment for this frame: {instruction}. "
    "Apply the change only to the region centred {x:.0f}% from the left edge and "
    "{y:.0f}% from the top edge; leave the rest of the frame untouched. "
    "Maintain cinematic continuity, character likeness, and environment structure."
)

REFERENCE_NOTE = (
    "Use the attached reference plates for identity and style: {labels}. "
    "Keep faces, wardrobe, and palette consistent with them."
)

CHARACTER_PLATE = (
    "{style} Character reference plate of {name}: {description}. "
    "Centered medium portrait, neutral grey studio background, even key light, "
    "high detail, no text."
)

ENVIRONMENT_PLATE = (
    "{style} Establishing shot location plate of {name}: {description}. "
    "Wide lens, no characters, atmospheric depth, no text."
)
