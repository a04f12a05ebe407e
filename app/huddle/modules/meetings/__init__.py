"""
Meetings module: meetings scheduled by group leaders, visible to group members.
"""
