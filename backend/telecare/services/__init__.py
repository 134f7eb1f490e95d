"""Business Logic Services.

This package contains all service modules that implement the call and
messaging coordination for telehealth appointments.

Service Categories:
- Call: Session negotiation, call state machine, status fan-out
- Messaging: Conversation registry, message service, message poller
- Core: Error taxonomy, repositories

External integrations:
- providers: Amazon Chime SDK meetings and messaging (boto3)
"""
