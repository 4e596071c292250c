"""
Unit tests for UserService class.
Tests role and quota management with mocked repositories.
"""

import pytest
from unittest.mock import Mock
from service.user_service import UserService
from core.exceptions import PermissionDeniedError, UserNotFoundError, ValidationError

USERS = {
    1: {"id": 1, "username": "root", "role": "admin", "telegram_id": 10, "created_at": 0,
        "last_login_at": None, "invited_by": None, "traffic_limit": 0, "certificate": None},
    2: {"id": 2, "username": "alice", "role": "user", "telegram_id": 20, "created_at": 0,
        "last_login_at": None, "invited_by": 1, "traffic_limit": 5000, "certificate": "pem"},
    3: {"id": 3, "username": "bob", "role": "vassal", "telegram_id": 30, "created_at": 0,
        "last_login_at": None, "invited_by": 2, "traffic_limit": 0, "certificate": None},
}

class TestUserService:
    """Test cases for UserService class."""
    
    @pytest.fixture
    def mock_user_repo(self):
        """Create a mock user repository backed by USERS."""
        repo = Mock()
        repo.get_user_by_id.side_effect = lambda user_id: USERS.get(user_id)
        repo.get_all_users.return_value = list(USERS.values())
        return repo
    
    @pytest.fixture
    def mock_traffic_repo(self):
        """Create a mock traffic repository."""
        repo = Mock()
        repo.get_total_user_traffic.return_value = 1234
        return repo
    
    @pytest.fixture
    def user_service(self, mock_user_repo, mock_traffic_repo):
        """Create UserService instance with mocked dependencies."""
        return UserService(mock_user_repo, mock_traffic_repo)
    
    def test_get_user_info_includes_usage_and_limits(self, user_service, mock_traffic_repo):
        """Test user info aggregates traffic and role limits."""
        # Act
        info = user_service.get_user_info(2)
        
        # Assert
        assert info["username"] == "alice"
        assert info["traffic_used"] == 1234
        assert info["has_certificate"] is True
        assert info["limits"]["max_invites"] == 4
        mock_traffic_repo.get_total_user_traffic.assert_called_once_with(2)
    
    def test_get_user_not_found(self, user_service):
        """Test lookup of a missing user."""
        with pytest.raises(UserNotFoundError):
            user_service.get_user(99)
    
    def test_get_all_users_requires_manager(self, user_service, mock_user_repo):
        """Test only roles that manage users can list them."""
        # Act
        users = user_service.get_all_users(1)
        
        # Assert
        assert len(users) == 3
        with pytest.raises(PermissionDeniedError):
            user_service.get_all_users(2)
    
    def test_set_user_role_success(self, user_service, mock_user_repo):
        """Test admin changes a role."""
        # Act
        result = user_service.set_user_role(1, 3, "user")
        
        # Assert
        assert "bob" in result["message"]
        mock_user_repo.update_role.assert_called_once_with(3, "user")
    
    def test_set_user_role_by_non_admin(self, user_service, mock_user_repo):
        """Test non-admins cannot change roles."""
        with pytest.raises(PermissionDeniedError):
            user_service.set_user_role(2, 3, "user")
        mock_user_repo.update_role.assert_not_called()
    
    def test_set_user_role_unknown_role(self, user_service):
        """Test unknown roles are rejected."""
        with pytest.raises(ValidationError):
            user_service.set_user_role(1, 3, "emperor")
    
    def test_set_traffic_limit(self, user_service, mock_user_repo):
        """Test admin sets a traffic limit."""
        # Act
        user_service.set_traffic_limit(1, 2, 10 * 1024 ** 3)
        
        # Assert
        mock_user_repo.update_traffic_limit.assert_called_once_with(2, 10 * 1024 ** 3)
    
    def test_set_negative_traffic_limit(self, user_service, mock_user_repo):
        """Test negative limits are rejected."""
        with pytest.raises(ValidationError):
            user_service.set_traffic_limit(1, 2, -1)
        mock_user_repo.update_traffic_limit.assert_not_called()
    
    def test_delete_user(self, user_service, mock_user_repo):
        """Test admin deletes a user."""
        result = user_service.delete_user(1, 3)
        
        assert "deleted" in result["message"]
        mock_user_repo.delete_user.assert_called_once_with(3)
    
    def test_delete_self_is_rejected(self, user_service, mock_user_repo):
        """Test an admin cannot delete their own account."""
        with pytest.raises(ValidationError):
            user_service.delete_user(1, 1)
        mock_user_repo.delete_user.assert_not_called()
    
    def test_promote_and_demote_follow_role_ladder(self, user_service, mock_user_repo):
        """Test promotion and demotion move one step."""
        user_service.promote_user(1, 3)
        user_service.demote_user(1, 2)
        
        mock_user_repo.update_role.assert_any_call(3, "user")
        mock_user_repo.update_role.assert_any_call(2, "vassal")
    
    def test_cannot_promote_past_admin_or_demote_below_vassal(self, user_service):
        """Test the ends of the role ladder."""
        with pytest.raises(ValidationError):
            user_service.promote_user(1, 1)
        with pytest.raises(ValidationError):
            user_service.demote_user(1, 3)
