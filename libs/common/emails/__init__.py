"""
Marketdotcom email package.

Modules:
- client: EmailClient that forwards templated emails to the email service
- orders: order, payment and wallet-deposit senders built on the client
"""
