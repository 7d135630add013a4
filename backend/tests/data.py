"""Identifiants et contenus partagés par les tests"""

USER_ID = "user-freelance-1"
OTHER_USER_ID = "user-freelance-2"
FAKE_PDF = b"%PDF-1.7 facturo-test"
