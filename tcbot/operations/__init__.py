"""
Operations Layer

Business logic that composes database methods and the stats calculator for
multi-step workflows.

Architecture:
- Database layer: Pure data access and CRUD operations
- Operations layer: Business logic composition and workflows
- Command layer: Discord integration and user interface

- UserOperations: User enrolment, user and hardware changes, manual offsets
"""
