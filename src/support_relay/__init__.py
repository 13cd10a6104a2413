from support_relay.app import create_app
