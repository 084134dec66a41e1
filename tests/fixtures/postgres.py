import logging
import pathlib
import sys

import pgextras as pgx
import pytest
from testcontainers.postgres import PostgresContainer

from libb import Setting

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
sys.path.insert(0, str(HERE.parent))
import config

logger = logging.getLogger(__name__)


@pytest.fixture(scope='session')
def psql_docker(request):
    """Session-scoped PostGIS container using testcontainers.

    Testcontainers automatically:
    - Assigns a random available port
    - Waits for the database to be ready
    - Handles cleanup when the session ends
    """
    container = PostgresContainer(
        image='postgis/postgis:16-3.4',
        username=config.postgresql.username,
        password=config.postgresql.password,
        dbname=config.postgresql.database,
    )

    try:
        container.start()

        # Update config with dynamic host/port
        Setting.unlock()
        config.postgresql.hostname = container.get_container_host_ip()
        config.postgresql.port = int(container.get_exposed_port(5432))
        Setting.lock()

        logger.info(
            f'PostGIS container started at '
            f'{config.postgresql.hostname}:{config.postgresql.port}'
        )

        # Verify connection works
        cn = pgx.connect('postgresql', config=config)
        cn.close()

        def finalizer():
            try:
                container.stop()
                logger.info('PostGIS container stopped')
            except Exception as e:
                logger.warning(f'Error stopping container: {e}')

        request.addfinalizer(finalizer)
        return container

    except Exception as e:
        logger.error(f'Error setting up postgis container: {e}')
        try:
            container.stop()
        except Exception as stop_error:
            logger.debug(f'Error stopping container after failed start: {stop_error}')
        raise


def stage_test_data(cn):
    pgx.execute(cn, 'create extension if not exists postgis')
    pgx.execute(cn, 'create extension if not exists hstore')

    pgx.execute(cn, 'drop table if exists parcels')

    create_and_insert_data = """
create table parcels (
    id integer not null,
    name varchar(255) not null,
    area numeric,
    tags hstore,
    geom geometry(Polygon,4326),
    primary key (id)
);

insert into parcels (id, name, area, tags, geom) values
(1, 'Meadow', 1.0, '"es"=>"hola"', 'SRID=4326;POLYGON((0 0, 1 0, 1 1, 0 1, 0 0))'),
(2, 'Orchard', 4.0, '"es"=>"adios", "kind"=>"fruit"', 'SRID=4326;POLYGON((2 2, 4 2, 4 4, 2 4, 2 2))'),
(3, 'Quarry', null, null, null);
"""
    pgx.execute(cn, create_and_insert_data)


@pytest.fixture
def conn(psql_docker):
    """
    Connection fixture with function scope for clean tests.
    Each test gets a fresh connection with reset test data.
    """
    cn = pgx.connect('postgresql', config=config)
    assert pgx.isconnection(cn)

    try:
        stage_test_data(cn)
        yield cn
    finally:
        try:
            cn.close()
        except Exception as e:
            logger.warning(f'Error during connection cleanup: {e}')
