# Keeps the repository root importable so tests resolve
# `feature_extraction` and `general_utils` without an install.
