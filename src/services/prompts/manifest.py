"""Manuscript analysis prompt templates."""

MANUSCRIPT_ANALYZER = """Act as a world-class production designer. Analyze this manuscript and extract a 'Visual Manifest'.
Focus on character visual traits, environment moods, and recurring motifs.

For each character give a name, their dramatic role, and a visual description detailed enough to paint a reference portrait (age, build, face, hair, wardrobe, distinguishing features).
For each environment give a name, its mood, and an ordered palette of 3-5 display colors as hex codes.
For each motif give a short label, a single Material icon name, a one-sentence description, and how often it recurs.

Return only JSON.

Manuscript:
<<<
{manuscript}
>>>"""
