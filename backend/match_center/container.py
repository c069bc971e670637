from fastapi import Request

from . import repos
from .cache import TaggedCache
from .search_queue import SearchQueue
from .services.achievements import AchievementService
from .services.families import FamilyService
from .services.map_templates import MapTemplateService
from .services.maps import MapService
from .services.players import PlayerService
from .services.ratings import RatingService
from .services.search import SearchService
from .services.statistics import StatisticsService
from .services.tournament_templates import TournamentTemplateService
from .services.tournaments import TournamentService


class Container:
    """Wires repositories and services around one database, cache and search backend."""

    def __init__(self, db, cache: TaggedCache, search_queue: SearchQueue, search_client=None):
        self.db = db
        self.cache = cache
        self.search_queue = search_queue

        self.audit = repos.AuditLogRepo(db)
        shared = (db, cache, self.audit, search_queue)
        self.players_repo = repos.PlayerRepo(*shared)
        self.families_repo = repos.FamilyRepo(*shared)
        self.map_templates_repo = repos.MapTemplateRepo(*shared)
        self.tournament_templates_repo = repos.TournamentTemplateRepo(*shared)
        self.tournaments_repo = repos.TournamentRepo(*shared)
        self.maps_repo = repos.MapRepo(*shared)

        self.player_map_participations = repos.PlayerMapParticipationRepo(db)
        self.family_map_participations = repos.FamilyMapParticipationRepo(db)
        self.player_tournament_participations = repos.PlayerTournamentParticipationRepo(db)
        self.family_tournament_participations = repos.FamilyTournamentParticipationRepo(db)
        self.player_earnings = repos.PlayerEarningRepo(db)
        self.family_earnings = repos.FamilyEarningRepo(db)
        self.player_achievements = repos.PlayerAchievementRepo(db)
        self.player_stats = repos.PlayerStatsRepo(db)
        self.family_stats = repos.FamilyStatsRepo(db)

        self.statistics = StatisticsService(self.player_stats, self.family_stats)
        self.ratings = RatingService(self.players_repo, self.families_repo)
        self.achievements = AchievementService(self.player_achievements, self.statistics)
        self.players = PlayerService(self.players_repo, self.families_repo, self.player_stats)
        self.families = FamilyService(self.families_repo, self.players_repo, self.tournaments_repo, self.family_stats)
        self.map_templates = MapTemplateService(self.map_templates_repo)
        self.tournament_templates = TournamentTemplateService(self.tournament_templates_repo, self.map_templates_repo)
        self.tournaments = TournamentService(
            self.tournaments_repo, self.tournament_templates_repo, self.families_repo, self.maps_repo,
            self.family_tournament_participations, self.player_tournament_participations,
            self.family_earnings, self.player_earnings, self.statistics,
        )
        self.maps = MapService(
            self.maps_repo, self.tournaments_repo, self.map_templates_repo, self.players_repo, self.families_repo,
            self.player_map_participations, self.family_map_participations,
            self.ratings, self.statistics, self.achievements,
        )
        self.search = SearchService(db, search_client, search_queue)


def get_container(request: Request) -> Container:
    return request.app.state.container
