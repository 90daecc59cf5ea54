"""
Console scripts, one per task.  Importing a script module registers its entrypoints.
"""
