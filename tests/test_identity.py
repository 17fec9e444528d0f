from timebill.identity import AuthConfig, IdentityResolver


class TestIdentityResolver:
    def test_claims_win(self):
        resolver = IdentityResolver(AuthConfig(signing_key="k", environment="development", dev_employee_id=9))
        actor = resolver.resolve({"employee_id": "4", "user_id": 11}, source="cli")
        assert actor.employee_id == 4
        assert actor.user_id == 11
        assert actor.source == "cli"

    def test_dev_bypass(self):
        resolver = IdentityResolver(AuthConfig(signing_key="k", environment="development", dev_employee_id=9))
        assert resolver.resolve(None).employee_id == 9

    def test_no_bypass_in_production(self):
        resolver = IdentityResolver(AuthConfig(signing_key="k", environment="production", dev_employee_id=9))
        assert resolver.resolve(None) is None

    def test_no_claims_no_bypass(self):
        resolver = IdentityResolver(AuthConfig(signing_key="k", environment="development"))
        assert resolver.resolve({}) is None
