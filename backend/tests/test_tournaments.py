"""Tournaments: creation from templates, participants, completion and prize distribution."""
import pytest

from conftest import iso_in, run


@pytest.fixture
def template(api):
    docks = api.map_template("Docks Warehouse")
    return api.tournament_template("Majestic Cup", [docks["id"]], description="Weekly cup", rules="No cheating",
                                   prize_pool=[{"target": {"tier": "winner"}, "currency": "MajesticCoins",
                                                "amount": 100}])


class TestCreateTournament:
    def test_slug_follows_template_usage(self, api, client, template, super_headers):
        """Slug follows template usage"""
        first = api.tournament(template["id"])
        second = api.tournament(template["id"], name="Summer Showdown")
        assert first["slug"] == "majestic-cup-1"
        assert second["slug"] == "majestic-cup-2"
        assert first["name"] == "Majestic Cup #1"
        assert second["name"] == "Summer Showdown"
        assert first["status"] == "planned"
        assert first["description"] == "Weekly cup"
        assert first["rules"] == "No cheating"
        assert first["prize_pool"] == template["prize_pool"]
        assert first["participants"] == []

        stored = client.get(f"/api/admin/tournament-templates/{template['id']}", headers=super_headers).json()
        assert stored["usage_count"] == 2

    def test_explicit_prize_pool_wins(self, api, template):
        """Explicit prize pool wins"""
        pool = [{"target": {"tier": "winner"}, "currency": "RealValue", "amount": 50}]
        tournament = api.tournament(template["id"], prize_pool=pool)
        assert tournament["prize_pool"][0]["currency"] == "RealValue"

    def test_missing_or_archived_template(self, client, template, super_headers):
        """Missing or archived template"""
        body = {"template_id": "missing", "start_date": iso_in(1)}
        assert client.post("/api/admin/tournaments", json=body, headers=super_headers).status_code == 404
        client.patch(f"/api/admin/tournament-templates/{template['id']}/archive", headers=super_headers)
        body["template_id"] = template["id"]
        assert client.post("/api/admin/tournaments", json=body, headers=super_headers).status_code == 404

    def test_end_before_start(self, client, template, super_headers):
        """End before start"""
        response = client.post("/api/admin/tournaments", json={
            "template_id": template["id"], "start_date": iso_in(2), "end_date": iso_in(1),
        }, headers=super_headers)
        assert response.status_code == 400

    def test_get_by_slug(self, api, client, template, super_headers):
        """Get by slug"""
        tournament = api.tournament(template["id"])
        response = client.get("/api/admin/tournaments/slug/majestic-cup-1", headers=super_headers)
        assert response.json()["id"] == tournament["id"]


class TestParticipants:
    def test_family_participants(self, api, client, template, super_headers):
        """Family participants"""
        tournament = api.tournament(template["id"])
        owner = api.player("Vito", "Corleone")
        family = api.family("Corleone Family", owner["id"])
        updated = api.participant(tournament["id"], family["id"])
        assert updated["participants"][0]["family"] == family["id"]
        assert updated["participants"][0]["participant_type"] == "family"

        url = f"/api/admin/tournaments/{tournament['id']}/participants"
        assert client.post(url, json={"family_id": family["id"]}, headers=super_headers).status_code == 409
        assert client.post(url, json={"family_id": "missing"}, headers=super_headers).status_code == 404

    def test_team_participants_need_a_name(self, api, client, template, super_headers):
        """Team participants need a name"""
        tournament = api.tournament(template["id"], tournament_type="team")
        url = f"/api/admin/tournaments/{tournament['id']}/participants"
        assert client.post(url, json={"participant_type": "team"}, headers=super_headers).status_code == 400
        response = client.post(url, json={"participant_type": "team", "team_name": "Night Owls"},
                               headers=super_headers)
        assert response.status_code == 200
        assert response.json()["participants"][0]["team_name"] == "Night Owls"

    def test_remove_participant(self, arena, api, client, super_headers):
        """Remove participant"""
        tournament = client.get(f"/api/admin/tournaments/{arena['tournament']['id']}", headers=super_headers).json()
        corleone_entry = next(p for p in tournament["participants"] if p["family"] == arena["corleone"]["id"])
        barzini_entry = next(p for p in tournament["participants"] if p["family"] == arena["barzini"]["id"])
        api.map(tournament["id"], arena["map_template"]["id"], participants=[arena["corleone"]["id"]])

        base = f"/api/admin/tournaments/{tournament['id']}/participants"
        assert client.delete(f"{base}/{corleone_entry['id']}", headers=super_headers).status_code == 400
        response = client.delete(f"{base}/{barzini_entry['id']}", headers=super_headers)
        assert response.status_code == 200
        assert [p["family"] for p in response.json()["participants"]] == [arena["corleone"]["id"]]
        assert client.delete(f"{base}/{barzini_entry['id']}", headers=super_headers).status_code == 404


class TestCompleteTournament:
    def complete(self, client, headers, tournament_id, body):
        return client.post(f"/api/admin/tournaments/{tournament_id}/complete", json=body, headers=headers)

    def test_prize_distribution(self, arena, client, container, super_headers):
        """Prize distribution"""
        tid = arena["tournament"]["id"]
        response = self.complete(client, super_headers, tid, {"outcomes": [
            {"family_id": arena["corleone"]["id"], "tier": "winner", "rank": 1},
            {"family_id": arena["barzini"]["id"], "tier": "runner_up", "rank": 2},
        ]})
        assert response.status_code == 200, response.text
        tournament = response.json()
        assert tournament["status"] == "completed"
        assert tournament["winner"] == arena["corleone"]["id"]
        assert tournament["end_date"]

        db = container.db
        family_earnings = run(db.family_earnings.find({"tournament_id": tid}, {"_id": 0}).to_list(None))
        by_family = {e["family_id"]: (e["currency"], e["amount"]) for e in family_earnings}
        assert by_family == {
            arena["corleone"]["id"]: ("MajesticCoins", 1000),
            arena["barzini"]["id"]: ("GTADollars", 500),
        }

        # Corleone has two members, each gets half
        shares = run(db.player_earnings.find({"family_id": arena["corleone"]["id"]}, {"_id": 0}).to_list(None))
        assert sorted(s["player_id"] for s in shares) == sorted([arena["vito"]["id"], arena["michael"]["id"]])
        assert all(s["amount"] == 500 for s in shares)

        vito_stats = run(db.player_stats.find_one({"player_id": arena["vito"]["id"]}, {"_id": 0}))
        assert vito_stats["overall"]["total_earnings"] == {"MajesticCoins": 500}
        won = vito_stats["overall"]["tournaments_won"][arena["template"]["id"]]
        assert won == {"count": 1, "template_name": "Majestic Cup"}
        emilio_stats = run(db.player_stats.find_one({"player_id": arena["emilio"]["id"]}, {"_id": 0}))
        assert emilio_stats["overall"]["total_earnings"] == {"GTADollars": 500}
        assert emilio_stats["overall"]["tournaments_won"] == {}

        participation = run(db.player_tournament_participations.find_one(
            {"player_id": arena["michael"]["id"], "tournament_id": tid}, {"_id": 0}))
        assert participation["result"] == {"tier": "winner", "rank": 1}
        assert participation["earnings"] == [{"currency": "MajesticCoins", "amount": 500}]
        family_participation = run(db.family_tournament_participations.find_one(
            {"family_id": arena["barzini"]["id"], "tournament_id": tid}, {"_id": 0}))
        assert family_participation["earnings"] == [{"currency": "GTADollars", "amount": 500}]

        family_stats = run(db.family_stats.find_one({"family_id": arena["corleone"]["id"]}, {"_id": 0}))
        assert family_stats["overall"]["tournaments_won"] == 1
        assert family_stats["overall"]["total_earnings"] == {"MajesticCoins": 1000}

    def test_winner_shortcut(self, arena, client, super_headers):
        """Winner shortcut"""
        response = self.complete(client, super_headers, arena["tournament"]["id"],
                                 {"winner_id": arena["barzini"]["id"]})
        assert response.status_code == 200
        assert response.json()["winner"] == arena["barzini"]["id"]

    def test_rejections(self, arena, client, super_headers):
        """Rejections"""
        tid = arena["tournament"]["id"]
        corleone = arena["corleone"]["id"]
        assert self.complete(client, super_headers, tid, {"outcomes": []}).status_code == 400
        assert self.complete(client, super_headers, "missing", {"winner_id": corleone}).status_code == 404
        no_winner = {"outcomes": [{"family_id": corleone, "tier": "runner_up", "rank": 2}]}
        assert self.complete(client, super_headers, tid, no_winner).status_code == 400
        stranger = {"outcomes": [{"family_id": "not-registered", "tier": "winner"}]}
        assert self.complete(client, super_headers, tid, stranger).status_code == 400

        assert self.complete(client, super_headers, tid, {"winner_id": corleone}).status_code == 200
        assert self.complete(client, super_headers, tid, {"winner_id": corleone}).status_code == 400

    def test_rank_targets_match_by_rank(self, api, client, container, super_headers):
        """Rank targets match by rank"""
        docks = api.map_template("Docks Warehouse")
        template = api.tournament_template("Ranked Cup", [docks["id"]], prize_pool=[
            {"target": {"tier": "participant", "rank": 3}, "currency": "RealValue", "amount": 30},
        ])
        tournament = api.tournament(template["id"])
        owners = [api.player(name, "Boss") for name in ["Alpha", "Bravo"]]
        families = [api.family(f"{o['first_name']} Crew", o["id"], "Boss") for o in owners]
        for family in families:
            api.participant(tournament["id"], family["id"])

        response = self.complete(client, super_headers, tournament["id"], {"outcomes": [
            {"family_id": families[0]["id"], "tier": "winner", "rank": 1},
            {"family_id": families[1]["id"], "tier": "third_place", "rank": 3},
        ]})
        assert response.status_code == 200
        earnings = run(container.db.family_earnings.find({}, {"_id": 0}).to_list(None))
        assert [(e["family_id"], e["amount"]) for e in earnings] == [(families[1]["id"], 30)]


class TestTournamentLifecycle:
    def test_update_and_archive(self, api, client, template, super_headers):
        """Update and archive"""
        tournament = api.tournament(template["id"])
        url = f"/api/admin/tournaments/{tournament['id']}"
        response = client.patch(url, json={"name": "Renamed Cup", "status": "active"}, headers=super_headers)
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed Cup"
        assert response.json()["status"] == "active"
        assert client.patch(url, json={"status": "completed"}, headers=super_headers).status_code == 400

        assert client.patch(f"{url}/archive", headers=super_headers).status_code == 200
        assert client.get(url, headers=super_headers).status_code == 404
        assert client.patch(f"{url}/restore", headers=super_headers).status_code == 200
        assert client.get(url, headers=super_headers).status_code == 200

    def test_update_rejects_nulls(self, api, client, template, super_headers):
        """Name, status and start date cannot be nulled, end date can"""
        tournament = api.tournament(template["id"])
        url = f"/api/admin/tournaments/{tournament['id']}"
        for field in ("name", "status", "start_date", "prize_pool"):
            assert client.patch(url, json={field: None}, headers=super_headers).status_code == 400, field
        response = client.patch(url, json={"end_date": None}, headers=super_headers)
        assert response.status_code == 200
        assert response.json()["start_date"] == tournament["start_date"]

    def test_stats_aggregate_map_participations(self, arena, api, client, super_headers):
        """Stats aggregate map participations"""
        tid = arena["tournament"]["id"]
        participants = [arena["corleone"]["id"], arena["barzini"]["id"]]
        for kills in (3, 5):
            game_map = api.map(tid, arena["map_template"]["id"], participants=participants)
            response = client.post(f"/api/admin/maps/{game_map['id']}/complete", json={
                "winner_family_id": arena["corleone"]["id"],
                "player_stats": [
                    {"player_id": arena["vito"]["id"], "kills": kills, "deaths": 1, "damage_dealt": 100},
                    {"player_id": arena["emilio"]["id"], "kills": 1, "deaths": 2, "damage_dealt": 40},
                ],
            }, headers=super_headers)
            assert response.status_code == 200, response.text

        stats = client.get(f"/api/admin/tournaments/{tid}/stats", headers=super_headers).json()
        assert [row["player_id"] for row in stats] == [arena["vito"]["id"], arena["emilio"]["id"]]
        vito = stats[0]
        assert (vito["kills"], vito["deaths"], vito["damage_dealt"], vito["maps_played"]) == (8, 2, 200, 2)
        assert vito["kd"] == 4
        assert vito["full_name"] == "Vito Corleone"
        assert client.get("/api/admin/tournaments/missing/stats", headers=super_headers).status_code == 404
