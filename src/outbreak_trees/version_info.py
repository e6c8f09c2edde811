# src/outbreak_trees/version_info.py
# Read by setup.py without importing the package (dependencies may be missing)
VERSION = "0.1.0"
