# studyvault/__init__.py
# Description: Local-first persistence services for the StudyVault client.
#
__version__ = "0.1.0"
