"""Process-wide infrastructure shared by stagewatch commands."""
