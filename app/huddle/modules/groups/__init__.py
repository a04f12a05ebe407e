"""
Groups module.

- A group has members; members flagged `leader` may edit it and manage its meetings
- Creating a group makes the creator its first leader
- Only members see the group's meetings
"""
