"""Local typed mirror of an OSCQuery remote's parameter tree."""
