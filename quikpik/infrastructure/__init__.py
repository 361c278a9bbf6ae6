"""Infrastructure layer module.

Contains configuration, logging setup and storage backends.
"""
