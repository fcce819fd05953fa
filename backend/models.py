import logging
import secrets
from datetime import timedelta

from psycopg import errors as pg_errors

from database.connection import get_db_cursor, close_db
from backend.errors import (
    ConflictError,
    InsufficientCropsError,
    InsufficientSeedsError,
    NotFoundError,
    ValidationError,
)
from backend.timeutils import utcnow

logger = logging.getLogger(__name__)


class User:
    def __init__(self, id=None, github_id=None, username=None, access_token=None, image=None,
                 last_synced_at=None, created_at=None, updated_at=None):
        self.id = id
        self.github_id = github_id
        self.username = username
        self.access_token = access_token
        self.image = image
        self.last_synced_at = last_synced_at
        self.created_at = created_at
        self.updated_at = updated_at

    @classmethod
    def upsert_from_github(cls, github_id, username, access_token, image=None):
        """Create or refresh a user from a GitHub profile.

        Returns ``(user, created)``. New users also get an empty seed row.
        """
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''INSERT INTO users (github_id, username, access_token, image)
                   VALUES (%s, %s, %s, %s)
                   ON CONFLICT (github_id) DO UPDATE
                   SET username = EXCLUDED.username,
                       access_token = EXCLUDED.access_token,
                       image = EXCLUDED.image,
                       updated_at = CURRENT_TIMESTAMP
                   RETURNING *, (xmax = 0) AS inserted''',
                (str(github_id), username, access_token, image)
            )
            row = dict(cur.fetchone())
            created = bool(row.pop('inserted', False))
            cur.execute(
                'INSERT INTO seeds (user_id, count) VALUES (%s, 0) ON CONFLICT (user_id) DO NOTHING',
                (row['id'],)
            )
            conn.commit()
            return cls(**row), created
        except Exception as e:
            conn.rollback()
            logger.error("Error upserting GitHub user %s: %s", username, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM users WHERE id = %s', (user_id,))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_username(cls, username):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM users WHERE LOWER(username) = LOWER(%s) LIMIT 1', (username,))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_all(cls):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM users ORDER BY id ASC')
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def mark_synced(cls, user_id, when=None):
        conn, cur = get_db_cursor()
        try:
            cur.execute('UPDATE users SET last_synced_at = %s WHERE id = %s', (when or utcnow(), user_id))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Error marking user %s as synced: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def delete(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('DELETE FROM users WHERE id = %s', (user_id,))
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0
        except Exception as e:
            conn.rollback()
            logger.error("Error deleting user %s: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def badge_stats(cls, user_id, month, year):
        """Everything the badge evaluator needs, loaded in one round trip."""
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''SELECT
                       u.created_at,
                       COALESCE((SELECT count FROM seeds WHERE user_id = u.id), 0) AS seed_count,
                       (SELECT COUNT(*) FROM user_plants WHERE user_id = u.id) AS plant_count,
                       COALESCE((SELECT SUM(harvest_count) FROM user_plants WHERE user_id = u.id), 0) AS total_harvests,
                       COALESCE((SELECT SUM(count) FROM github_activities WHERE user_id = u.id), 0) AS total_contributions,
                       COALESCE((SELECT count FROM github_activities
                                 WHERE user_id = u.id AND year = %s AND month = %s), 0) AS month_contributions,
                       (SELECT COUNT(*) FROM user_badges WHERE user_id = u.id) AS owned_badge_count
                   FROM users u WHERE u.id = %s''',
                (year, month, user_id)
            )
            row = cur.fetchone()
            if not row:
                return None
            stats = {k: int(v) for k, v in row.items() if k != 'created_at'}
            stats['join_year'] = row['created_at'].year if row['created_at'] else None
            return stats
        finally:
            close_db(conn, cur)

    def to_dict(self):
        return {
            'id': self.id,
            'github_id': self.github_id,
            'username': self.username,
            'image': self.image,
            'last_synced_at': self.last_synced_at.isoformat() if self.last_synced_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Seed:
    @classmethod
    def get_count(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT count FROM seeds WHERE user_id = %s', (user_id,))
            row = cur.fetchone()
            return row['count'] if row else 0
        finally:
            close_db(conn, cur)

    @classmethod
    def add(cls, user_id, amount):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''INSERT INTO seeds (user_id, count) VALUES (%s, %s)
                   ON CONFLICT (user_id) DO UPDATE
                   SET count = seeds.count + EXCLUDED.count, updated_at = CURRENT_TIMESTAMP
                   RETURNING count''',
                (user_id, amount)
            )
            count = cur.fetchone()['count']
            conn.commit()
            return count
        except Exception as e:
            conn.rollback()
            logger.error("Error adding seeds for user %s: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def use(cls, user_id, amount):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT count FROM seeds WHERE user_id = %s FOR UPDATE', (user_id,))
            row = cur.fetchone()
            if not row or row['count'] < amount:
                raise InsufficientSeedsError()
            cur.execute(
                'UPDATE seeds SET count = count - %s, updated_at = CURRENT_TIMESTAMP WHERE user_id = %s RETURNING count',
                (amount, user_id)
            )
            count = cur.fetchone()['count']
            conn.commit()
            return count
        except Exception:
            conn.rollback()
            raise
        finally:
            close_db(conn, cur)


class SuperUser:
    ROLES = ('ADMIN', 'CONTENT', 'SHOP_MANAGER')

    def __init__(self, id=None, user_id=None, role='ADMIN', created_at=None, updated_at=None,
                 username=None, image=None):
        self.id = id
        self.user_id = user_id
        self.role = role
        self.created_at = created_at
        self.updated_at = updated_at
        self.username = username
        self.image = image

    _SELECT = '''SELECT s.*, u.username, u.image
                 FROM super_users s JOIN users u ON u.id = s.user_id'''

    @classmethod
    def get_by_user_id(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE s.user_id = %s', (user_id,))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, super_user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE s.id = %s', (super_user_id,))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_all(cls):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' ORDER BY s.id ASC')
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def create(cls, user_id, role='ADMIN'):
        if role not in cls.ROLES:
            raise ValidationError(f"Invalid role: {role}")
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT id FROM users WHERE id = %s', (user_id,))
            if not cur.fetchone():
                raise NotFoundError('User not found')
            cur.execute(
                'INSERT INTO super_users (user_id, role) VALUES (%s, %s) RETURNING id',
                (user_id, role)
            )
            new_id = cur.fetchone()['id']
            conn.commit()
        except pg_errors.UniqueViolation:
            conn.rollback()
            raise ConflictError('User is already an admin')
        except Exception:
            conn.rollback()
            raise
        finally:
            close_db(conn, cur)
        return cls.get_by_id(new_id)

    @classmethod
    def update_role(cls, super_user_id, role):
        if role not in cls.ROLES:
            raise ValidationError(f"Invalid role: {role}")
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                'UPDATE super_users SET role = %s, updated_at = CURRENT_TIMESTAMP WHERE id = %s',
                (role, super_user_id)
            )
            updated = cur.rowcount
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Error updating admin %s: %s", super_user_id, e)
            raise
        finally:
            close_db(conn, cur)
        if not updated:
            raise NotFoundError('Admin not found')
        return cls.get_by_id(super_user_id)

    @classmethod
    def delete(cls, super_user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('DELETE FROM super_users WHERE id = %s', (super_user_id,))
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0
        except Exception as e:
            conn.rollback()
            logger.error("Error deleting admin %s: %s", super_user_id, e)
            raise
        finally:
            close_db(conn, cur)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'role': self.role,
            'username': self.username,
            'image': self.image,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class RefreshToken:
    """Opaque rotating refresh tokens grouped into families (one family per login)."""

    @staticmethod
    def new_token():
        return secrets.token_hex(40)

    @classmethod
    def create(cls, user_id, lifetime_seconds, is_admin=False, family_id=None):
        token = cls.new_token()
        family_id = family_id or secrets.token_hex(16)
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''INSERT INTO refresh_tokens (token, user_id, family_id, is_admin, expires_at)
                   VALUES (%s, %s, %s, %s, %s)''',
                (token, user_id, family_id, is_admin, utcnow() + timedelta(seconds=lifetime_seconds))
            )
            conn.commit()
            return token
        except Exception as e:
            conn.rollback()
            logger.error("Error creating refresh token for user %s: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def rotate(cls, token, lifetime_seconds):
        """Swap a refresh token for a new one in the same family.

        Returns ``(row, new_token)`` or None when the token is unknown,
        expired or already used. Presenting a used token revokes its family.
        """
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM refresh_tokens WHERE token = %s FOR UPDATE', (token,))
            row = cur.fetchone()
            if not row:
                return None
            if row['is_revoked']:
                cur.execute('UPDATE refresh_tokens SET is_revoked = TRUE WHERE family_id = %s', (row['family_id'],))
                conn.commit()
                logger.warning("Refresh token reuse detected for user %s, family revoked", row['user_id'])
                return None
            cur.execute('UPDATE refresh_tokens SET is_revoked = TRUE WHERE id = %s', (row['id'],))
            if row['expires_at'] <= utcnow():
                conn.commit()
                return None
            new_token = cls.new_token()
            cur.execute(
                '''INSERT INTO refresh_tokens (token, user_id, family_id, is_admin, expires_at)
                   VALUES (%s, %s, %s, %s, %s)''',
                (new_token, row['user_id'], row['family_id'], row['is_admin'],
                 utcnow() + timedelta(seconds=lifetime_seconds))
            )
            conn.commit()
            return row, new_token
        except Exception as e:
            conn.rollback()
            logger.error("Error rotating refresh token: %s", e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def revoke(cls, token):
        conn, cur = get_db_cursor()
        try:
            cur.execute('UPDATE refresh_tokens SET is_revoked = TRUE WHERE token = %s', (token,))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Error revoking refresh token: %s", e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def purge_stale(cls):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                'DELETE FROM refresh_tokens WHERE expires_at < CURRENT_TIMESTAMP'
            )
            purged = cur.rowcount
            conn.commit()
            return purged
        except Exception as e:
            conn.rollback()
            logger.error("Error purging refresh tokens: %s", e)
            raise
        finally:
            close_db(conn, cur)


class GitHubActivity:
    def __init__(self, id=None, user_id=None, year=None, month=None, count=0, updated_at=None):
        self.id = id
        self.user_id = user_id
        self.year = year
        self.month = month
        self.count = count
        self.updated_at = updated_at

    @classmethod
    def get_by_user(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                'SELECT * FROM github_activities WHERE user_id = %s ORDER BY year DESC, month DESC',
                (user_id,)
            )
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, user_id, activity_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM github_activities WHERE id = %s AND user_id = %s', (activity_id, user_id))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_count(cls, user_id, year, month):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                'SELECT count FROM github_activities WHERE user_id = %s AND year = %s AND month = %s',
                (user_id, year, month)
            )
            row = cur.fetchone()
            return row['count'] if row else 0
        finally:
            close_db(conn, cur)

    @classmethod
    def get_year(cls, user_id, year):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                'SELECT month, count FROM github_activities WHERE user_id = %s AND year = %s',
                (user_id, year)
            )
            return {r['month']: r['count'] for r in cur.fetchall() or []}
        finally:
            close_db(conn, cur)

    @classmethod
    def upsert_many(cls, user_id, monthly_counts):
        """``monthly_counts`` maps ``(year, month)`` to a contribution count."""
        if not monthly_counts:
            return 0
        conn, cur = get_db_cursor()
        try:
            for (year, month), count in sorted(monthly_counts.items()):
                cur.execute(
                    '''INSERT INTO github_activities (user_id, year, month, count)
                       VALUES (%s, %s, %s, %s)
                       ON CONFLICT (user_id, year, month) DO UPDATE
                       SET count = EXCLUDED.count, updated_at = CURRENT_TIMESTAMP''',
                    (user_id, year, month, count)
                )
            conn.commit()
            return len(monthly_counts)
        except Exception as e:
            conn.rollback()
            logger.error("Error saving activities for user %s: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)

    def to_dict(self):
        return {
            'id': self.id,
            'year': self.year,
            'month': self.month,
            'count': self.count,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class MonthlyPlant:
    FIELDS = ('title', 'name', 'description', 'main_image_url', 'image_urls', 'icon_url',
              'crop_image_url', 'month', 'year')
    TRANSLATABLE = ('title', 'name', 'description')

    def __init__(self, id=None, title=None, name=None, description=None, main_image_url=None,
                 image_urls=None, icon_url=None, crop_image_url=None, month=None, year=None,
                 updated_by_id=None, created_at=None, updated_at=None):
        self.id = id
        self.title = title
        self.name = name
        self.description = description
        self.main_image_url = main_image_url
        self.image_urls = list(image_urls or [])
        self.icon_url = icon_url
        self.crop_image_url = crop_image_url
        self.month = month
        self.year = year
        self.updated_by_id = updated_by_id
        self.created_at = created_at
        self.updated_at = updated_at

    @classmethod
    def get_all(cls):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM monthly_plants ORDER BY year DESC, month DESC')
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, plant_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM monthly_plants WHERE id = %s', (plant_id,))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_month(cls, month, year):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM monthly_plants WHERE month = %s AND year = %s', (month, year))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def create(cls, data, updated_by_id=None):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''INSERT INTO monthly_plants (title, name, description, main_image_url, image_urls,
                                               icon_url, crop_image_url, month, year, updated_by_id)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING *''',
                (data['title'], data['name'], data['description'], data.get('main_image_url'),
                 data['image_urls'], data.get('icon_url'), data.get('crop_image_url'),
                 data['month'], data['year'], updated_by_id)
            )
            row = cur.fetchone()
            conn.commit()
            return cls(**row)
        except pg_errors.UniqueViolation:
            conn.rollback()
            raise ConflictError('A plant already exists for this month')
        except Exception as e:
            conn.rollback()
            logger.error("Error creating monthly plant: %s", e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def update(cls, plant_id, data, updated_by_id=None):
        fields = [f for f in cls.FIELDS if f in data]
        conn, cur = get_db_cursor()
        try:
            sets = ', '.join(f"{f} = %s" for f in fields + ['updated_by_id'])
            cur.execute(
                f'UPDATE monthly_plants SET {sets}, updated_at = CURRENT_TIMESTAMP WHERE id = %s RETURNING *',
                tuple(data[f] for f in fields) + (updated_by_id, plant_id)
            )
            row = cur.fetchone()
            conn.commit()
        except pg_errors.UniqueViolation:
            conn.rollback()
            raise ConflictError('A plant already exists for this month')
        except Exception as e:
            conn.rollback()
            logger.error("Error updating monthly plant %s: %s", plant_id, e)
            raise
        finally:
            close_db(conn, cur)
        if not row:
            raise NotFoundError('Monthly plant not found')
        return cls(**row)

    @classmethod
    def delete(cls, plant_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('DELETE FROM monthly_plants WHERE id = %s', (plant_id,))
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0
        except Exception as e:
            conn.rollback()
            logger.error("Error deleting monthly plant %s: %s", plant_id, e)
            raise
        finally:
            close_db(conn, cur)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'name': self.name,
            'description': self.description,
            'main_image_url': self.main_image_url,
            'image_urls': self.image_urls,
            'icon_url': self.icon_url,
            'crop_image_url': self.crop_image_url,
            'month': self.month,
            'year': self.year,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class UserPlant:
    def __init__(self, id=None, user_id=None, monthly_plant_id=None, stage='SEED', harvest_count=0,
                 planted_at=None, updated_at=None, monthly_plant=None):
        self.id = id
        self.user_id = user_id
        self.monthly_plant_id = monthly_plant_id
        self.stage = stage
        self.harvest_count = harvest_count
        self.planted_at = planted_at
        self.updated_at = updated_at
        # row_to_json of the joined monthly_plants row
        self.monthly_plant = monthly_plant

    _SELECT = '''SELECT up.*, row_to_json(mp.*) AS monthly_plant
                 FROM user_plants up JOIN monthly_plants mp ON mp.id = up.monthly_plant_id'''

    @classmethod
    def get_by_user(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE up.user_id = %s ORDER BY up.planted_at DESC', (user_id,))
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, user_id, plant_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE up.id = %s AND up.user_id = %s', (plant_id, user_id))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_for_monthly_plant(cls, user_id, monthly_plant_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE up.user_id = %s AND up.monthly_plant_id = %s',
                        (user_id, monthly_plant_id))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def create(cls, user_id, monthly_plant_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''INSERT INTO user_plants (user_id, monthly_plant_id, stage, harvest_count)
                   VALUES (%s, %s, 'SEED', 0) RETURNING id''',
                (user_id, monthly_plant_id)
            )
            new_id = cur.fetchone()['id']
            conn.commit()
        except pg_errors.UniqueViolation:
            conn.rollback()
            raise ConflictError("You have already planted this month's plant")
        except Exception as e:
            conn.rollback()
            logger.error("Error creating plant for user %s: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)
        return cls.get_by_id(user_id, new_id)

    @classmethod
    def delete(cls, user_id, plant_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('DELETE FROM user_plants WHERE id = %s AND user_id = %s', (plant_id, user_id))
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0
        except Exception as e:
            conn.rollback()
            logger.error("Error deleting plant %s: %s", plant_id, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def reconcile(cls, user_id, monthly_plant_id, contributions):
        """Bring a plant's harvest count and stage in line with ``contributions``.

        The plant row is locked for the duration so concurrent runs cannot
        issue the same harvest twice. Returns the applied GrowthPlan, or None
        when the user has not planted this monthly plant.
        """
        from backend.services.growth import plan_harvest

        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''SELECT id, harvest_count, stage FROM user_plants
                   WHERE user_id = %s AND monthly_plant_id = %s FOR UPDATE''',
                (user_id, monthly_plant_id)
            )
            row = cur.fetchone()
            if not row:
                conn.rollback()
                return None
            plan = plan_harvest(contributions, row['harvest_count'])
            if plan.new_crops:
                cur.execute(
                    '''INSERT INTO user_crops (user_id, monthly_plant_id, quantity)
                       VALUES (%s, %s, %s)
                       ON CONFLICT (user_id, monthly_plant_id) DO UPDATE
                       SET quantity = user_crops.quantity + EXCLUDED.quantity,
                           updated_at = CURRENT_TIMESTAMP''',
                    (user_id, monthly_plant_id, plan.new_crops)
                )
            if plan.harvest_count != row['harvest_count'] or plan.stage != row['stage']:
                cur.execute(
                    '''UPDATE user_plants SET harvest_count = %s, stage = %s, updated_at = CURRENT_TIMESTAMP
                       WHERE id = %s''',
                    (plan.harvest_count, plan.stage, row['id'])
                )
            conn.commit()
            return plan
        except Exception as e:
            conn.rollback()
            logger.error("Error reconciling plant growth for user %s: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)

    def to_dict(self):
        from backend.services.growth import stage_image_url

        plant = self.monthly_plant or {}
        return {
            'id': self.id,
            'monthly_plant_id': self.monthly_plant_id,
            'stage': self.stage,
            'harvest_count': self.harvest_count,
            'planted_at': self.planted_at.isoformat() if self.planted_at else None,
            'monthly_plant': plant or None,
            'current_image_url': stage_image_url(plant.get('image_urls') or [], self.stage),
        }


def plan_crop_sale(held, requested):
    """Validate a crop sale against the quantities a user holds.

    ``held`` maps monthly_plant_id to quantity, ``requested`` is a list of
    ``(monthly_plant_id, quantity)`` pairs (repeated ids are summed).
    Returns the remaining quantity per sold id, or raises
    InsufficientCropsError without touching anything.
    """
    if not requested:
        raise ValidationError('No crops to sell')
    wanted = {}
    for plant_id, quantity in requested:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise InsufficientCropsError('Crop quantity must be a positive number')
        wanted[plant_id] = wanted.get(plant_id, 0) + quantity
    remaining = {}
    for plant_id, quantity in wanted.items():
        have = held.get(plant_id, 0)
        if have < quantity:
            raise InsufficientCropsError(f"Not enough crops for plant {plant_id}")
        remaining[plant_id] = have - quantity
    return remaining


class UserCrop:
    def __init__(self, id=None, user_id=None, monthly_plant_id=None, quantity=0, created_at=None,
                 updated_at=None, name=None, crop_image_url=None, month=None, year=None):
        self.id = id
        self.user_id = user_id
        self.monthly_plant_id = monthly_plant_id
        self.quantity = quantity
        self.created_at = created_at
        self.updated_at = updated_at
        self.name = name
        self.crop_image_url = crop_image_url
        self.month = month
        self.year = year

    @classmethod
    def get_by_user(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''SELECT uc.*, mp.name, mp.crop_image_url, mp.month, mp.year
                   FROM user_crops uc JOIN monthly_plants mp ON mp.id = uc.monthly_plant_id
                   WHERE uc.user_id = %s AND uc.quantity > 0
                   ORDER BY mp.year DESC, mp.month DESC''',
                (user_id,)
            )
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def sell(cls, user_id, items, total_price):
        """Sell crops for seeds in a single transaction; returns the new seed balance."""
        if not isinstance(total_price, int) or isinstance(total_price, bool) or total_price < 0:
            raise ValidationError('total_price must be a non-negative integer')
        conn, cur = get_db_cursor()
        try:
            plant_ids = sorted({plant_id for plant_id, _ in items})
            cur.execute(
                '''SELECT monthly_plant_id, quantity FROM user_crops
                   WHERE user_id = %s AND monthly_plant_id = ANY(%s)
                   ORDER BY monthly_plant_id FOR UPDATE''',
                (user_id, plant_ids)
            )
            held = {r['monthly_plant_id']: r['quantity'] for r in cur.fetchall() or []}
            remaining = plan_crop_sale(held, items)
            for plant_id, quantity in remaining.items():
                cur.execute(
                    '''UPDATE user_crops SET quantity = %s, updated_at = CURRENT_TIMESTAMP
                       WHERE user_id = %s AND monthly_plant_id = %s''',
                    (quantity, user_id, plant_id)
                )
            cur.execute(
                '''INSERT INTO seeds (user_id, count) VALUES (%s, %s)
                   ON CONFLICT (user_id) DO UPDATE
                   SET count = seeds.count + EXCLUDED.count, updated_at = CURRENT_TIMESTAMP
                   RETURNING count''',
                (user_id, total_price)
            )
            seed_count = cur.fetchone()['count']
            conn.commit()
            return seed_count
        except Exception:
            conn.rollback()
            raise
        finally:
            close_db(conn, cur)

    def to_dict(self):
        return {
            'id': self.id,
            'monthly_plant_id': self.monthly_plant_id,
            'quantity': self.quantity,
            'name': self.name,
            'crop_image_url': self.crop_image_url,
            'month': self.month,
            'year': self.year,
        }


class GardenItem:
    CATEGORIES = ('background', 'pot', 'crop')
    MODES = ('DEFAULT', 'GARDEN', 'MINI')
    FIELDS = ('name', 'category', 'mode', 'image_url', 'icon_url', 'price', 'is_available')
    TRANSLATABLE = ('name',)

    def __init__(self, id=None, name=None, category=None, mode='DEFAULT', image_url=None, icon_url=None,
                 price=0, is_available=True, updated_by_id=None, created_at=None, updated_at=None):
        self.id = id
        self.name = name
        self.category = category
        self.mode = mode
        self.image_url = image_url
        self.icon_url = icon_url
        self.price = price
        self.is_available = is_available
        self.updated_by_id = updated_by_id
        self.created_at = created_at
        self.updated_at = updated_at

    @classmethod
    def get_all(cls, category=None, available_only=False):
        conn, cur = get_db_cursor()
        try:
            base = 'SELECT * FROM garden_items WHERE 1=1'
            params = []
            if category:
                base += ' AND category = %s'
                params.append(category)
            if available_only:
                base += ' AND is_available = TRUE'
            base += ' ORDER BY id ASC'
            cur.execute(base, tuple(params))
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, item_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM garden_items WHERE id = %s', (item_id,))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_defaults(cls):
        """Starter items every new user receives (names prefixed ``default_``)."""
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''SELECT * FROM garden_items
                   WHERE name ILIKE %s
                     AND ((category = 'background' AND mode IN ('GARDEN', 'MINI')) OR category = 'pot')
                   ORDER BY id ASC''',
                ('default\\_%',)
            )
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def create(cls, data, updated_by_id=None):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''INSERT INTO garden_items (name, category, mode, image_url, icon_url, price, is_available, updated_by_id)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s) RETURNING *''',
                (data['name'], data['category'], data.get('mode') or 'DEFAULT', data['image_url'],
                 data.get('icon_url'), data.get('price', 0), data.get('is_available', True), updated_by_id)
            )
            row = cur.fetchone()
            conn.commit()
            return cls(**row)
        except Exception as e:
            conn.rollback()
            logger.error("Error creating garden item: %s", e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def update(cls, item_id, data, updated_by_id=None):
        fields = [f for f in cls.FIELDS if f in data]
        conn, cur = get_db_cursor()
        try:
            sets = ', '.join(f"{f} = %s" for f in fields + ['updated_by_id'])
            cur.execute(
                f'UPDATE garden_items SET {sets}, updated_at = CURRENT_TIMESTAMP WHERE id = %s RETURNING *',
                tuple(data[f] for f in fields) + (updated_by_id, item_id)
            )
            row = cur.fetchone()
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Error updating garden item %s: %s", item_id, e)
            raise
        finally:
            close_db(conn, cur)
        if not row:
            raise NotFoundError('Item not found')
        return cls(**row)

    @classmethod
    def delete(cls, item_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('DELETE FROM garden_items WHERE id = %s', (item_id,))
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0
        except Exception as e:
            conn.rollback()
            logger.error("Error deleting garden item %s: %s", item_id, e)
            raise
        finally:
            close_db(conn, cur)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'mode': self.mode,
            'image_url': self.image_url,
            'icon_url': self.icon_url,
            'price': self.price,
            'is_available': self.is_available,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class UserItem:
    def __init__(self, id=None, user_id=None, item_id=None, equipped=False, acquired_at=None, item=None):
        self.id = id
        self.user_id = user_id
        self.item_id = item_id
        self.equipped = equipped
        self.acquired_at = acquired_at
        self.item = item

    _SELECT = '''SELECT ui.*, row_to_json(gi.*) AS item
                 FROM user_items ui JOIN garden_items gi ON gi.id = ui.item_id'''

    @classmethod
    def get_by_user(cls, user_id, category=None, equipped_only=False):
        conn, cur = get_db_cursor()
        try:
            query = cls._SELECT + ' WHERE ui.user_id = %s'
            params = [user_id]
            if category:
                query += ' AND gi.category = %s'
                params.append(category)
            if equipped_only:
                query += ' AND ui.equipped = TRUE'
            query += ' ORDER BY ui.acquired_at DESC'
            cur.execute(query, tuple(params))
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, user_id, user_item_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE ui.id = %s AND ui.user_id = %s', (user_item_id, user_id))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def grant(cls, user_id, item_ids):
        """Give items for free, skipping ones already owned. Returns the ids granted."""
        if not item_ids:
            return []
        conn, cur = get_db_cursor()
        try:
            granted = []
            for item_id in item_ids:
                cur.execute(
                    '''INSERT INTO user_items (user_id, item_id) VALUES (%s, %s)
                       ON CONFLICT (user_id, item_id) DO NOTHING RETURNING item_id''',
                    (user_id, item_id)
                )
                row = cur.fetchone()
                if row:
                    granted.append(row['item_id'])
            conn.commit()
            return granted
        except Exception as e:
            conn.rollback()
            logger.error("Error granting items to user %s: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def purchase(cls, user_id, item_id):
        """Buy a shop item with seeds. Returns ``(user_item_id, seed_count)``."""
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT id, price, is_available FROM garden_items WHERE id = %s', (item_id,))
            item = cur.fetchone()
            if not item:
                raise NotFoundError('Item not found')
            if not item['is_available']:
                raise ValidationError('Item is not available')
            cur.execute('SELECT 1 FROM user_items WHERE user_id = %s AND item_id = %s', (user_id, item_id))
            if cur.fetchone():
                raise ConflictError('Item already owned')
            cur.execute('SELECT count FROM seeds WHERE user_id = %s FOR UPDATE', (user_id,))
            seed = cur.fetchone()
            if not seed or seed['count'] < item['price']:
                raise InsufficientSeedsError()
            cur.execute(
                'UPDATE seeds SET count = count - %s, updated_at = CURRENT_TIMESTAMP WHERE user_id = %s RETURNING count',
                (item['price'], user_id)
            )
            seed_count = cur.fetchone()['count']
            cur.execute(
                'INSERT INTO user_items (user_id, item_id) VALUES (%s, %s) RETURNING id',
                (user_id, item_id)
            )
            user_item_id = cur.fetchone()['id']
            conn.commit()
            return user_item_id, seed_count
        except pg_errors.UniqueViolation:
            conn.rollback()
            raise ConflictError('Item already owned')
        except Exception:
            conn.rollback()
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def set_equipped(cls, user_id, user_item_id, equipped):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''SELECT ui.id, gi.category, gi.mode
                   FROM user_items ui JOIN garden_items gi ON gi.id = ui.item_id
                   WHERE ui.id = %s AND ui.user_id = %s FOR UPDATE OF ui''',
                (user_item_id, user_id)
            )
            row = cur.fetchone()
            if not row:
                raise NotFoundError('Item not found')
            if equipped:
                # one equipped item per category (per mode for backgrounds)
                query = '''UPDATE user_items ui SET equipped = FALSE
                           FROM garden_items gi
                           WHERE gi.id = ui.item_id AND ui.user_id = %s AND ui.id <> %s AND gi.category = %s'''
                params = [user_id, user_item_id, row['category']]
                if row['category'] == 'background':
                    query += ' AND gi.mode = %s'
                    params.append(row['mode'])
                cur.execute(query, tuple(params))
            cur.execute('UPDATE user_items SET equipped = %s WHERE id = %s', (bool(equipped), user_item_id))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            close_db(conn, cur)
        return cls.get_by_id(user_id, user_item_id)

    def to_dict(self):
        return {
            'id': self.id,
            'item_id': self.item_id,
            'equipped': self.equipped,
            'acquired_at': self.acquired_at.isoformat() if self.acquired_at else None,
            'item': self.item,
        }


class Badge:
    FIELDS = ('name', 'condition', 'image_url')
    TRANSLATABLE = ('name', 'condition')

    def __init__(self, id=None, name=None, condition=None, image_url=None, updated_by_id=None,
                 created_at=None, updated_at=None):
        self.id = id
        self.name = name
        self.condition = condition
        self.image_url = image_url
        self.updated_by_id = updated_by_id
        self.created_at = created_at
        self.updated_at = updated_at

    @classmethod
    def get_all(cls):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM badges ORDER BY id ASC')
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, badge_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT * FROM badges WHERE id = %s', (badge_id,))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def create(cls, data, updated_by_id=None):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                'INSERT INTO badges (name, condition, image_url, updated_by_id) VALUES (%s, %s, %s, %s) RETURNING *',
                (data['name'], data['condition'], data['image_url'], updated_by_id)
            )
            row = cur.fetchone()
            conn.commit()
            return cls(**row)
        except Exception as e:
            conn.rollback()
            logger.error("Error creating badge: %s", e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def update(cls, badge_id, data, updated_by_id=None):
        fields = [f for f in cls.FIELDS if f in data]
        conn, cur = get_db_cursor()
        try:
            sets = ', '.join(f"{f} = %s" for f in fields + ['updated_by_id'])
            cur.execute(
                f'UPDATE badges SET {sets}, updated_at = CURRENT_TIMESTAMP WHERE id = %s RETURNING *',
                tuple(data[f] for f in fields) + (updated_by_id, badge_id)
            )
            row = cur.fetchone()
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Error updating badge %s: %s", badge_id, e)
            raise
        finally:
            close_db(conn, cur)
        if not row:
            raise NotFoundError('Badge not found')
        return cls(**row)

    @classmethod
    def delete(cls, badge_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('DELETE FROM badges WHERE id = %s', (badge_id,))
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0
        except Exception as e:
            conn.rollback()
            logger.error("Error deleting badge %s: %s", badge_id, e)
            raise
        finally:
            close_db(conn, cur)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'condition': self.condition,
            'image_url': self.image_url,
        }


class UserBadge:
    @classmethod
    def get_by_user(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''SELECT ub.badge_id, ub.awarded_at, b.name, b.condition, b.image_url
                   FROM user_badges ub JOIN badges b ON b.id = ub.badge_id
                   WHERE ub.user_id = %s ORDER BY ub.awarded_at DESC''',
                (user_id,)
            )
            return [
                {**r, 'awarded_at': r['awarded_at'].isoformat() if r['awarded_at'] else None}
                for r in cur.fetchall() or []
            ]
        finally:
            close_db(conn, cur)

    @classmethod
    def owned_badge_ids(cls, user_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT badge_id FROM user_badges WHERE user_id = %s', (user_id,))
            return {r['badge_id'] for r in cur.fetchall() or []}
        finally:
            close_db(conn, cur)

    @classmethod
    def award_many(cls, user_id, badge_ids):
        """Insert ownership rows; returns the badge ids that were actually new."""
        if not badge_ids:
            return []
        conn, cur = get_db_cursor()
        try:
            awarded = []
            for badge_id in badge_ids:
                cur.execute(
                    '''INSERT INTO user_badges (user_id, badge_id) VALUES (%s, %s)
                       ON CONFLICT (user_id, badge_id) DO NOTHING RETURNING badge_id''',
                    (user_id, badge_id)
                )
                row = cur.fetchone()
                if row:
                    awarded.append(row['badge_id'])
            conn.commit()
            return awarded
        except Exception as e:
            conn.rollback()
            logger.error("Error awarding badges to user %s: %s", user_id, e)
            raise
        finally:
            close_db(conn, cur)


class UpdateNote:
    FIELDS = ('title', 'description', 'image_urls', 'published_at', 'valid_until')
    TRANSLATABLE = ('title', 'description')

    def __init__(self, id=None, title=None, description=None, image_urls=None, published_at=None,
                 valid_until=None, is_active=False, updated_by_id=None, created_at=None, updated_at=None,
                 item_ids=None):
        self.id = id
        self.title = title
        self.description = description
        self.image_urls = list(image_urls or [])
        self.published_at = published_at
        self.valid_until = valid_until
        self.is_active = is_active
        self.updated_by_id = updated_by_id
        self.created_at = created_at
        self.updated_at = updated_at
        self.item_ids = [i for i in (item_ids or []) if i is not None]

    _SELECT = '''SELECT n.*, COALESCE(array_agg(l.item_id ORDER BY l.item_id)
                                      FILTER (WHERE l.item_id IS NOT NULL), '{}') AS item_ids
                 FROM update_notes n LEFT JOIN update_note_items l ON l.note_id = n.id'''

    @classmethod
    def get_all(cls):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' GROUP BY n.id ORDER BY n.published_at DESC')
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def get_by_id(cls, note_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE n.id = %s GROUP BY n.id', (note_id,))
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_active(cls):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE n.is_active = TRUE GROUP BY n.id ORDER BY n.published_at DESC LIMIT 1')
            row = cur.fetchone()
            return cls(**row) if row else None
        finally:
            close_db(conn, cur)

    @classmethod
    def get_published(cls, now=None):
        conn, cur = get_db_cursor()
        try:
            cur.execute(cls._SELECT + ' WHERE n.published_at <= %s GROUP BY n.id ORDER BY n.published_at DESC',
                        (now or utcnow(),))
            return [cls(**r) for r in cur.fetchall() or []]
        finally:
            close_db(conn, cur)

    @classmethod
    def _replace_items(cls, cur, note_id, item_ids):
        cur.execute('DELETE FROM update_note_items WHERE note_id = %s', (note_id,))
        for item_id in sorted(set(item_ids)):
            cur.execute('INSERT INTO update_note_items (note_id, item_id) VALUES (%s, %s)', (note_id, item_id))

    @classmethod
    def create(cls, data, item_ids=None, updated_by_id=None):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''INSERT INTO update_notes (title, description, image_urls, published_at, valid_until, updated_by_id)
                   VALUES (%s, %s, %s, COALESCE(%s, CURRENT_TIMESTAMP), %s, %s) RETURNING id''',
                (data['title'], data['description'], data.get('image_urls') or [], data.get('published_at'),
                 data.get('valid_until'), updated_by_id)
            )
            note_id = cur.fetchone()['id']
            cls._replace_items(cur, note_id, item_ids or [])
            conn.commit()
        except pg_errors.ForeignKeyViolation:
            conn.rollback()
            raise ValidationError('Unknown garden item in item_ids')
        except Exception as e:
            conn.rollback()
            logger.error("Error creating update note: %s", e)
            raise
        finally:
            close_db(conn, cur)
        return cls.get_by_id(note_id)

    @classmethod
    def update(cls, note_id, data, item_ids=None, updated_by_id=None):
        fields = [f for f in cls.FIELDS if f in data]
        conn, cur = get_db_cursor()
        try:
            sets = ', '.join(f"{f} = %s" for f in fields + ['updated_by_id'])
            cur.execute(
                f'UPDATE update_notes SET {sets}, updated_at = CURRENT_TIMESTAMP WHERE id = %s',
                tuple(data[f] for f in fields) + (updated_by_id, note_id)
            )
            if not cur.rowcount:
                raise NotFoundError('Update note not found')
            if item_ids is not None:
                cls._replace_items(cur, note_id, item_ids)
            conn.commit()
        except pg_errors.ForeignKeyViolation:
            conn.rollback()
            raise ValidationError('Unknown garden item in item_ids')
        except Exception:
            conn.rollback()
            raise
        finally:
            close_db(conn, cur)
        return cls.get_by_id(note_id)

    @classmethod
    def delete(cls, note_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('DELETE FROM update_notes WHERE id = %s', (note_id,))
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0
        except Exception as e:
            conn.rollback()
            logger.error("Error deleting update note %s: %s", note_id, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def apply_sweep(cls, now=None):
        """Recompute which note is active and which linked items are on sale.

        Runs as one transaction with every note row locked.
        """
        from backend.services.update_notes import NoteState, compute_sweep

        now = now or utcnow()
        conn, cur = get_db_cursor()
        try:
            cur.execute('SELECT id, published_at, valid_until, is_active FROM update_notes ORDER BY id FOR UPDATE')
            notes = [NoteState(**r) for r in cur.fetchall() or []]
            cur.execute('SELECT note_id, item_id FROM update_note_items')
            links = [(r['note_id'], r['item_id']) for r in cur.fetchall() or []]
            plan = compute_sweep(notes, links, now)
            current = {n.id: n for n in notes}
            for note in plan.notes:
                before = current[note.id]
                if before.is_active != note.is_active or before.valid_until != note.valid_until:
                    cur.execute(
                        'UPDATE update_notes SET is_active = %s, valid_until = %s WHERE id = %s',
                        (note.is_active, note.valid_until, note.id)
                    )
            if plan.available_item_ids:
                cur.execute('UPDATE garden_items SET is_available = TRUE WHERE id = ANY(%s)',
                            (sorted(plan.available_item_ids),))
            if plan.unavailable_item_ids:
                cur.execute('UPDATE garden_items SET is_available = FALSE WHERE id = ANY(%s)',
                            (sorted(plan.unavailable_item_ids),))
            conn.commit()
            return plan
        except Exception as e:
            conn.rollback()
            logger.error("Error updating active update note: %s", e)
            raise
        finally:
            close_db(conn, cur)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'image_urls': self.image_urls,
            'published_at': self.published_at.isoformat() if self.published_at else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'is_active': self.is_active,
            'item_ids': self.item_ids,
        }


class Translation:
    ENTITY_TYPES = ('GardenItem', 'Badge', 'MonthlyPlant', 'UpdateNote')
    LANGUAGES = ('en', 'ko')

    @classmethod
    def get_for(cls, entity_type, entity_ids, language):
        """Return ``{entity_id: {field: value}}`` for the given entities."""
        ids = [str(i) for i in entity_ids]
        if not ids:
            return {}
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''SELECT entity_id, field, value FROM translations
                   WHERE entity_type = %s AND language = %s AND entity_id = ANY(%s)''',
                (entity_type, language, ids)
            )
            out = {}
            for r in cur.fetchall() or []:
                out.setdefault(r['entity_id'], {})[r['field']] = r['value']
            return out
        finally:
            close_db(conn, cur)

    @classmethod
    def upsert(cls, entity_type, entity_id, field, language, value):
        conn, cur = get_db_cursor()
        try:
            cur.execute(
                '''INSERT INTO translations (entity_type, entity_id, field, language, value)
                   VALUES (%s, %s, %s, %s, %s)
                   ON CONFLICT (entity_type, entity_id, field, language) DO UPDATE
                   SET value = EXCLUDED.value, updated_at = CURRENT_TIMESTAMP''',
                (entity_type, str(entity_id), field, language, value)
            )
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Error saving translation %s/%s/%s: %s", entity_type, entity_id, field, e)
            raise
        finally:
            close_db(conn, cur)

    @classmethod
    def delete_for(cls, entity_type, entity_id):
        conn, cur = get_db_cursor()
        try:
            cur.execute('DELETE FROM translations WHERE entity_type = %s AND entity_id = %s',
                        (entity_type, str(entity_id)))
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Error deleting translations for %s/%s: %s", entity_type, entity_id, e)
            raise
        finally:
            close_db(conn, cur)


def get_admin_stats():
    conn, cur = get_db_cursor()
    try:
        cur.execute(
            '''SELECT
                   (SELECT COUNT(*) FROM users) AS users,
                   (SELECT COUNT(*) FROM super_users) AS admins,
                   (SELECT COUNT(*) FROM monthly_plants) AS monthly_plants,
                   (SELECT COUNT(*) FROM garden_items) AS items,
                   (SELECT COUNT(*) FROM badges) AS badges,
                   (SELECT COUNT(*) FROM update_notes) AS update_notes,
                   (SELECT COUNT(*) FROM user_plants) AS planted,
                   COALESCE((SELECT SUM(harvest_count) FROM user_plants), 0) AS harvests'''
        )
        return {k: int(v) for k, v in cur.fetchone().items()}
    finally:
        close_db(conn, cur)
