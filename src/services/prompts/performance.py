"""Voice performance prompt templates."""

PERFORMANCE_DIRECTOR = """Perform the following {genre} script passage as a voice actor.
Performance brief: {brief}.

Bracketed cues such as [whispering] or [pause] are stage directions. NEVER say them aloud; let them shape tone, volume, and timing instead.
Speak only the words of the passage.

{text}"""
