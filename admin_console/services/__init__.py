"""Service helpers shared by the editing core and its front-ends."""
