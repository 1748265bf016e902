"""
rc2docker - local Docker setup for the rc2 desktop client
"""
