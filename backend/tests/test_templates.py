"""Map templates and tournament templates."""


class TestMapTemplates:
    def test_create_derives_slug(self, api):
        """Create derives slug"""
        template = api.map_template("Docks Warehouse", description="Container yard", map_image="/maps/docks.png")
        assert template["slug"] == "docks-warehouse"
        assert template["usage_count"] == 0

    def test_name_and_slug_unique_among_active(self, api, client, super_headers):
        """Name and slug unique among active"""
        api.map_template("Docks Warehouse")
        for name in ["docks warehouse", "Docks  Warehouse!"]:
            response = client.post("/api/admin/map-templates", json={"name": name}, headers=super_headers)
            assert response.status_code == 409, name

    def test_field_limits(self, client, super_headers):
        """Field limits"""
        assert client.post("/api/admin/map-templates", json={"name": "Ab"}, headers=super_headers).status_code == 400
        response = client.post("/api/admin/map-templates", json={"name": "Airfield", "description": "x" * 501},
                               headers=super_headers)
        assert response.status_code == 400

    def test_search_filter(self, api, client, super_headers):
        """Search filter"""
        api.map_template("Docks Warehouse")
        api.map_template("Desert Airfield")
        data = client.get("/api/admin/map-templates?search=air", headers=super_headers).json()
        assert [t["name"] for t in data["data"]] == ["Desert Airfield"]

    def test_update_renames(self, api, client, super_headers):
        """Update renames"""
        template = api.map_template("Docks Warehouse")
        response = client.patch(f"/api/admin/map-templates/{template['id']}", json={"name": "Harbor Docks"},
                                headers=super_headers)
        assert response.status_code == 200
        assert response.json()["slug"] == "harbor-docks"

    def test_name_cannot_be_nulled(self, api, client, super_headers):
        """Name cannot be nulled"""
        template = api.map_template("Docks Warehouse")
        url = f"/api/admin/map-templates/{template['id']}"
        assert client.patch(url, json={"name": None}, headers=super_headers).status_code == 400
        assert client.patch(url, json={"description": None}, headers=super_headers).status_code == 200
        assert client.get(url, headers=super_headers).json()["name"] == "Docks Warehouse"

    def test_archive_restore_rules(self, api, client, super_headers):
        """Archive restore rules"""
        template = api.map_template("Docks Warehouse")
        url = f"/api/admin/map-templates/{template['id']}"
        assert client.patch(f"{url}/restore", headers=super_headers).status_code == 409
        assert client.patch(f"{url}/archive", headers=super_headers).status_code == 200
        assert client.patch(f"{url}/archive", headers=super_headers).status_code == 409

        # An archived name may be reused, which then blocks restoring the original
        api.map_template("Docks Warehouse")
        assert client.patch(f"{url}/restore", headers=super_headers).status_code == 409

    def test_missing_template(self, client, super_headers):
        """Missing template"""
        assert client.get("/api/admin/map-templates/missing", headers=super_headers).status_code == 404


class TestTournamentTemplates:
    def test_create(self, api):
        """Create"""
        docks = api.map_template("Docks Warehouse")
        template = api.tournament_template("Majestic Cup", [docks["id"]], prize_pool=[
            {"target": {"tier": "winner", "rank": 1}, "currency": "MajesticCoins", "amount": 1000},
        ], rules="Best of three")
        assert template["slug"] == "majestic-cup"
        assert template["usage_count"] == 0
        assert template["map_templates"] == [docks["id"]]
        assert template["prize_pool"][0]["target"] == {"tier": "winner", "rank": 1}

    def test_map_templates_must_exist_and_be_active(self, api, client, super_headers):
        """Map templates must exist and be active"""
        docks = api.map_template("Docks Warehouse")
        response = client.post("/api/admin/tournament-templates", json={
            "name": "Majestic Cup", "map_templates": [docks["id"], "missing"],
        }, headers=super_headers)
        assert response.status_code == 404

        client.patch(f"/api/admin/map-templates/{docks['id']}/archive", headers=super_headers)
        response = client.post("/api/admin/tournament-templates", json={
            "name": "Majestic Cup", "map_templates": [docks["id"]],
        }, headers=super_headers)
        assert response.status_code == 409

    def test_validation(self, api, client, super_headers):
        """Validation"""
        docks = api.map_template("Docks Warehouse")
        bad_bodies = [
            {"name": "Majestic Cup", "map_templates": []},
            {"name": "Cu", "map_templates": [docks["id"]]},
            {"name": "Majestic Cup", "map_templates": [docks["id"]],
             "prize_pool": [{"target": {"tier": "winner"}, "currency": "MajesticCoins", "amount": -5}]},
            {"name": "Majestic Cup", "map_templates": [docks["id"]],
             "prize_pool": [{"target": {"tier": "champion"}, "currency": "MajesticCoins", "amount": 5}]},
            {"name": "Majestic Cup", "map_templates": [docks["id"]],
             "prize_pool": [{"target": {"tier": "winner"}, "currency": "Bitcoin", "amount": 5}]},
        ]
        for body in bad_bodies:
            response = client.post("/api/admin/tournament-templates", json=body, headers=super_headers)
            assert response.status_code == 400, body

    def test_update_rejects_nulls(self, api, client, super_headers):
        """Update rejects nulls"""
        docks = api.map_template("Docks Warehouse")
        template = api.tournament_template("Majestic Cup", [docks["id"]])
        url = f"/api/admin/tournament-templates/{template['id']}"
        for field in ("name", "map_templates", "prize_pool"):
            assert client.patch(url, json={field: None}, headers=super_headers).status_code == 400, field
        assert client.patch(url, json={"rules": None}, headers=super_headers).status_code == 200

    def test_duplicate_name(self, api, client, super_headers):
        """Duplicate name"""
        docks = api.map_template("Docks Warehouse")
        api.tournament_template("Majestic Cup", [docks["id"]])
        response = client.post("/api/admin/tournament-templates", json={
            "name": "majestic cup", "map_templates": [docks["id"]],
        }, headers=super_headers)
        assert response.status_code == 409

    def test_archive_and_restore(self, api, client, super_headers):
        """Archive and restore"""
        docks = api.map_template("Docks Warehouse")
        template = api.tournament_template("Majestic Cup", [docks["id"]])
        url = f"/api/admin/tournament-templates/{template['id']}"
        assert client.patch(f"{url}/archive", headers=super_headers).status_code == 200
        assert client.patch(f"{url}/archive", headers=super_headers).status_code == 409
        listed = client.get("/api/admin/tournament-templates?status=archived", headers=super_headers).json()
        assert listed["total"] == 1
        assert client.patch(f"{url}/restore", headers=super_headers).status_code == 200
        assert client.patch(f"{url}/restore", headers=super_headers).status_code == 409
