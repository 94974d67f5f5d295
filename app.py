"""
Streamlit Web Application for TORUS Max Supply Projection

This application provides an interactive interface over the projection
engine. Users load a cached staking snapshot (stake events, create events and
reward pool rows), adjust the extrapolation parameters and explore the
projected maximum supply, its breakdown, daily maturity releases and the
dilution caused by hypothetical new positions, using Altair charts.
"""

import json
import logging
from datetime import date

import streamlit as st
import altair as alt
import numpy as np
import pandas as pd

# Import core projection components
# Note: Ensure the engine modules are installed or in the same directory
from stake_positions import Position, convert_to_positions
from supply_sim import (
    ProjectionConfig,
    SupplyProjectionSimulation,
    dilution_to_frame,
    maturity_schedule,
    position_projections_to_frame,
)

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Configure Streamlit page
st.set_page_config(
    page_title="TORUS Max Supply Projection",
    page_icon=None,
    layout="wide",
    initial_sidebar_state="expanded"
)


def load_snapshot(raw: bytes) -> dict:
    """
    Parse an uploaded cached-data JSON snapshot

    Accepts either the full dashboard cache (with a stakingData section) or
    the stakingData section on its own.
    """
    data = json.loads(raw)
    staking = data.get('stakingData', data)
    return {
        'stake_events': staking.get('stakeEvents', []),
        'create_events': staking.get('createEvents', []),
        'reward_pool_data': staking.get('rewardPoolData', []),
        'current_protocol_day': staking.get('currentProtocolDay'),
        'total_supply': staking.get('totalSupply', 0),
    }


def create_sidebar_config() -> tuple[ProjectionConfig, dict, float, int]:
    """
    Create sidebar configuration interface with organized parameter groups

    Returns:
        Tuple of (ProjectionConfig, snapshot, current supply, current protocol day)
    """
    st.sidebar.title("Projection Configuration")
    st.sidebar.markdown("Load a staking snapshot and adjust the projection parameters")

    # DATA SNAPSHOT
    with st.sidebar.expander("Staking Snapshot", expanded=True):
        uploaded = st.file_uploader(
            "Cached data (JSON)",
            type=["json"],
            help="Dashboard cache with stakeEvents, createEvents and rewardPoolData."
        )
        snapshot = None
        if uploaded is not None:
            try:
                snapshot = load_snapshot(uploaded.getvalue())
            except (json.JSONDecodeError, AttributeError) as exc:
                st.error(f"Could not read snapshot: {exc}")
            else:
                st.caption(
                    f"{len(snapshot['stake_events'])} stakes, "
                    f"{len(snapshot['create_events'])} creates, "
                    f"{len(snapshot['reward_pool_data'])} reward pool days"
                )

    # PROTOCOL STATE
    with st.sidebar.expander("Protocol State", expanded=True):
        start_date = st.date_input(
            "Contract Start Date (UTC)",
            value=date(2025, 7, 11),
            help="Protocol day 1 begins at midnight UTC on this date."
        )

        default_supply = float((snapshot or {}).get('total_supply') or 0)
        current_supply = st.number_input(
            "Current Supply (TORUS)",
            min_value=0.0, value=default_supply, step=1000.0,
            help="Supply today, already net of burns. Projections add maturing positions on top."
        )

        default_day = int((snapshot or {}).get('current_protocol_day') or 1)
        current_protocol_day = st.number_input(
            "Current Protocol Day",
            min_value=1, max_value=10_000, value=max(default_day, 1), step=1,
            help="First day to simulate. Everything settled before this day is already in current supply."
        )

    # REWARD POOL EXTRAPOLATION
    with st.sidebar.expander("Reward Pool Extrapolation", expanded=False):
        st.markdown("**Estimate reward pools past the last known day**")

        daily_reduction_pct = st.number_input(
            "Daily Reduction Rate (%)",
            min_value=0.0, max_value=5.0, value=0.08, step=0.01,
            format="%.3f",
            help="Reward pool shrinks by this percentage every day after the last known value."
        )

        horizon_day = st.slider(
            "Minimum Horizon (protocol day)",
            min_value=10, max_value=400, value=96, step=1,
            help="Extrapolate at least to this day."
        )

        max_staking_days = st.slider(
            "Maximum Staking Term (days)",
            min_value=1, max_value=365, value=88, step=1,
            help="The horizon always extends one full term past the current protocol day."
        )

        keep = 1 - daily_reduction_pct / 100
        st.caption(f"Pool after 30 days: {keep ** 30 * 100:.2f}% of the last known value")

    config = ProjectionConfig(
        contract_start_date=f"{start_date.isoformat()}T00:00:00Z",
        daily_reduction_rate=daily_reduction_pct / 100,
        horizon_day=horizon_day,
        max_staking_days=max_staking_days,
    )

    return config, snapshot, current_supply, int(current_protocol_day)


def create_dilution_inputs(config: ProjectionConfig, current_protocol_day: int) -> list[Position]:
    """Sidebar form describing one hypothetical new position for dilution analysis"""
    with st.sidebar.expander("Dilution Scenario", expanded=False):
        st.markdown("**Add a hypothetical position and compare**")
        position_type = st.selectbox("Position Type", ["stake", "create"])
        amount = st.number_input("Amount (TORUS)", min_value=0.0, value=10_000.0, step=1000.0)
        shares = st.number_input(
            "Shares", min_value=1.0, value=50_000_000.0, step=1_000_000.0,
            help="Share weight of the new position (grows with amount and duration squared)."
        )
        staking_days = st.slider("Staking Days", min_value=1, max_value=config.max_staking_days,
                                 value=config.max_staking_days)

    epoch = config.epoch
    start = epoch + pd.Timedelta(days=current_protocol_day - 1)
    maturity = start + pd.Timedelta(days=staking_days)
    base_amount = str(int(amount * 10 ** config.base_unit_decimals))
    return [Position(
        user='scenario',
        id='1',
        type=position_type,
        shares=str(int(shares * 10 ** config.base_unit_decimals)),
        maturity_date=maturity.isoformat(),
        timestamp=start.isoformat(),
        staking_days=staking_days,
        principal=base_amount if position_type == 'stake' else None,
        torus_amount=base_amount if position_type == 'create' else None,
    )]


def create_charts(results: dict) -> None:
    """
    Create visualization charts from projection results using Altair

    Args:
        results: Dictionary containing simulation results
    """

    # Configure Altair
    alt.data_transformers.enable('json')

    supply = results['total_max_supply']
    if len(supply) == 0:
        st.warning("No projection rows were produced. Check the validation report below.")
        return

    # Main metrics overview
    col1, col2, col3, col4 = st.columns(4)

    with col1:
        st.metric(
            "Projected Max Supply",
            f"{supply[-1]/1e6:.2f}M"
        )

    with col2:
        growth = supply[-1] - results['current_supply']
        st.metric(
            "Growth over Current",
            f"{growth/1e6:.2f}M TORUS"
        )

    with col3:
        st.metric(
            "Peak Active Positions",
            f"{int(np.max(results['active_positions'])):,}"
        )

    with col4:
        st.metric(
            "Projected Days",
            f"{results['days'][0]} to {results['days'][-1]}"
        )

    # Max supply over time
    st.subheader("Future Max Supply")
    st.caption("""
    Maximum possible TORUS supply if every position claims at maturity. Supply only grows on a
    position's maturity day, by its principal (stakes) or minted amount (creates) plus the reward
    it accumulated through maturity.
    """)
    supply_df = pd.DataFrame({
        'Day': results['days'],
        'Date': results['dates'],
        'Max Supply (Millions)': supply / 1e6
    })
    supply_chart = alt.Chart(supply_df).mark_line(
        color='#fbbf24',
        strokeWidth=3
    ).encode(
        x=alt.X('Day:Q', title='Protocol Day'),
        y=alt.Y('Max Supply (Millions):Q', title='TORUS (Millions)', scale=alt.Scale(zero=False)),
        tooltip=[
            alt.Tooltip('Day:Q', title='Day'),
            alt.Tooltip('Date:N', title='Date'),
            alt.Tooltip('Max Supply (Millions):Q', title='Max Supply (M)', format='.3f')
        ]
    ).properties(
        height=400
    ).interactive()
    st.altair_chart(supply_chart, use_container_width=True)

    # Breakdown stacked area
    st.subheader("Max Supply Breakdown")
    st.caption("""
    Current supply plus the running totals released by maturing stakes and creates.
    """)
    breakdown_df = pd.DataFrame({
        'Day': results['days'],
        'Current Supply': np.full(len(supply), results['current_supply']) / 1e6,
        'From Stakes': results['from_stakes'] / 1e6,
        'From Creates': results['from_creates'] / 1e6
    })
    breakdown_melted = breakdown_df.melt(
        id_vars=['Day'],
        var_name='Source',
        value_name='TORUS (Millions)'
    )
    breakdown_color_scale = alt.Scale(
        domain=['Current Supply', 'From Stakes', 'From Creates'],
        range=['#1f77b4', '#2ca02c', '#9467bd']
    )
    breakdown_chart = alt.Chart(breakdown_melted).mark_area(
        opacity=0.7,
        line={'strokeWidth': 2}
    ).encode(
        x=alt.X('Day:Q', title='Protocol Day'),
        y=alt.Y('TORUS (Millions):Q', stack='zero', title='TORUS (Millions)'),
        color=alt.Color('Source:N', scale=breakdown_color_scale),
        tooltip=[
            alt.Tooltip('Day:Q', title='Day'),
            alt.Tooltip('Source:N', title='Source'),
            alt.Tooltip('TORUS (Millions):Q', title='TORUS (M)', format='.3f')
        ]
    ).properties(
        height=400
    ).interactive()
    st.altair_chart(breakdown_chart, use_container_width=True)

    # Daily releases and reward pool side by side
    col1, col2 = st.columns(2)

    with col1:
        st.markdown("**Daily Maturity Releases**")
        release_df = pd.DataFrame({
            'Day': results['days'],
            'Stakes': results['released_from_stakes'],
            'Creates': results['released_from_creates']
        }).melt(id_vars=['Day'], var_name='Type', value_name='TORUS')
        release_chart = alt.Chart(release_df).mark_bar().encode(
            x=alt.X('Day:O', title='Protocol Day'),
            y=alt.Y('TORUS:Q', stack='zero', title='TORUS released'),
            color=alt.Color('Type:N', scale=alt.Scale(range=['#9467bd', '#2ca02c'])),
            tooltip=[
                alt.Tooltip('Day:O', title='Day'),
                alt.Tooltip('Type:N', title='Type'),
                alt.Tooltip('TORUS:Q', title='Released', format=',.2f')
            ]
        ).properties(
            height=300
        )
        st.altair_chart(release_chart, use_container_width=True)

    with col2:
        st.markdown("**Daily Reward Pool (known and extrapolated)**")
        pool_df = pd.DataFrame({
            'Day': [row.day for row in results['extended_reward_pool']],
            'Reward Pool': [float(row.reward_pool) for row in results['extended_reward_pool']],
            'Source': ['Extrapolated' if row.is_extrapolated else 'Known'
                       for row in results['extended_reward_pool']]
        })
        pool_chart = alt.Chart(pool_df).mark_line(
            point=True
        ).encode(
            x=alt.X('Day:Q', title='Protocol Day'),
            y=alt.Y('Reward Pool:Q', title='TORUS'),
            color=alt.Color('Source:N', scale=alt.Scale(range=['#1f77b4', '#ff7f0e'])),
            tooltip=[
                alt.Tooltip('Day:Q', title='Day'),
                alt.Tooltip('Reward Pool:Q', title='Reward Pool', format=',.2f'),
                alt.Tooltip('Source:N', title='Source')
            ]
        ).properties(
            height=300
        ).interactive()
        st.altair_chart(pool_chart, use_container_width=True)

    # Maturity schedule
    st.subheader("Maturity Schedule")
    schedule = maturity_schedule(results['position_projections'])
    st.dataframe(schedule, use_container_width=True)

    # Data export section
    with st.expander("Export Projection Data"):
        st.markdown("Download projection results for further analysis")

        df = pd.DataFrame({
            'Day': results['days'],
            'Date': results['dates'],
            'Total_Max_Supply': supply,
            'Active_Positions': results['active_positions'],
            'Daily_Reward_Pool': results['daily_reward_pool'],
            'Total_Shares': results['total_shares'],
            'From_Stakes': results['from_stakes'],
            'From_Creates': results['from_creates'],
            'Released_From_Stakes': results['released_from_stakes'],
            'Released_From_Creates': results['released_from_creates']
        })

        st.dataframe(df.head(10), use_container_width=True)

        csv = df.to_csv(index=False)
        st.download_button(
            label="Download Complete Dataset (CSV)",
            data=csv,
            file_name="max_supply_projection.csv",
            mime="text/csv"
        )

        positions_csv = position_projections_to_frame(results['position_projections']).to_csv(index=False)
        st.download_button(
            label="Download Position Projections (CSV)",
            data=positions_csv,
            file_name="position_projections.csv",
            mime="text/csv"
        )


def create_dilution_chart(dilution) -> None:
    """Plot baseline vs. diluted supply and the per-day dilution percentage"""
    st.subheader("Dilution Analysis")
    st.caption("""
    Both series start at day 1 from zero supply. Positive dilution means the baseline positions
    earn less because the new position competes for the same reward pools.
    """)
    df = dilution_to_frame(dilution)
    if df.empty:
        st.info("No dilution rows produced.")
        return

    col1, col2 = st.columns(2)
    with col1:
        compare_df = df[['day', 'supply_before', 'supply_after']].rename(columns={
            'day': 'Day', 'supply_before': 'Baseline', 'supply_after': 'With New Position'
        }).melt(id_vars=['Day'], var_name='Series', value_name='TORUS')
        compare_chart = alt.Chart(compare_df).mark_line(strokeWidth=2).encode(
            x=alt.X('Day:Q', title='Protocol Day'),
            y=alt.Y('TORUS:Q', title='Settled TORUS'),
            color=alt.Color('Series:N'),
            tooltip=[
                alt.Tooltip('Day:Q', title='Day'),
                alt.Tooltip('Series:N', title='Series'),
                alt.Tooltip('TORUS:Q', title='TORUS', format=',.2f')
            ]
        ).properties(height=300).interactive()
        st.altair_chart(compare_chart, use_container_width=True)

    with col2:
        pct_chart = alt.Chart(df).mark_area(opacity=0.7, color='#d62728').encode(
            x=alt.X('day:Q', title='Protocol Day'),
            y=alt.Y('dilution_percentage:Q', title='Dilution (%)'),
            tooltip=[
                alt.Tooltip('day:Q', title='Day'),
                alt.Tooltip('dilution_percentage:Q', title='Dilution (%)', format='.4f')
            ]
        )
        zero_line = alt.Chart(pd.DataFrame({'y': [0]})).mark_rule(
            color='gray',
            strokeDash=[5, 5],
            opacity=0.5
        ).encode(y='y:Q')
        st.altair_chart((pct_chart + zero_line).properties(height=300).interactive(),
                        use_container_width=True)


def show_validation_report(results: dict) -> None:
    report = results['validation_report']
    audit = results['reward_pool_audit']
    with st.expander(f"Validation Report ({report.count()} skipped)", expanded=False):
        if report.is_clean:
            st.success("All records were used")
        else:
            for kind, entries in report.by_category().items():
                st.write(f"- {kind}: {len(entries)}")
            st.dataframe(report.to_frame(), use_container_width=True)

        st.markdown("**Reward Pool Audit**")
        if audit.is_valid:
            st.write("Extended reward pool series is gap-free and decays as configured.")
        else:
            for error in audit.errors[:20]:
                st.write(f"- {error}")


def main():
    """Main Streamlit application"""

    # Header
    st.title("TORUS Future Max Supply Projection")
    st.markdown("""
    **Project the maximum token supply from every locked stake and create position**

    Each position earns its share of the daily reward pool until maturity and releases its
    principal or minted amount plus accrued reward on its maturity day. Load a snapshot and
    adjust the extrapolation parameters in the sidebar.
    """)

    # Configuration sidebar
    config, snapshot, current_supply, current_protocol_day = create_sidebar_config()
    new_positions = create_dilution_inputs(config, current_protocol_day)

    # Add run button in sidebar
    st.sidebar.markdown("---")
    run_projection = st.sidebar.button("Run Projection", type="primary", use_container_width=True,
                                       disabled=snapshot is None)

    if run_projection and snapshot is not None:
        with st.spinner("🔄 Running max supply projection..."):
            positions = convert_to_positions(snapshot['stake_events'], snapshot['create_events'])
            sim = SupplyProjectionSimulation(
                positions,
                snapshot['reward_pool_data'],
                current_supply,
                config,
                current_protocol_day,
            )
            results = sim.run_simulation()
            dilution = sim.simulate_dilution(new_positions)

            # Cache results in session state
            st.session_state.results = results
            st.session_state.summary = sim.get_summary_metrics()
            st.session_state.dilution = dilution
            st.session_state.has_results = True

    # Display results if available
    if hasattr(st.session_state, 'has_results') and st.session_state.has_results:
        st.success("✅ Projection completed successfully!")
        results = st.session_state.results
        summary = st.session_state.summary

        # Show configuration summary
        with st.expander("Current Configuration Summary", expanded=False):
            config_summary = results['config'].get_config_summary()
            col1, col2 = st.columns(2)

            with col1:
                st.markdown("**Protocol**")
                st.write(f"Contract start: {config_summary['contract_start_date']}")
                st.write(f"Base unit decimals: {config_summary['base_unit_decimals']}")
                st.write(f"Current supply: {results['current_supply']:,.2f} TORUS")

            with col2:
                st.markdown("**Extrapolation**")
                st.write(f"Daily reduction: {config_summary['daily_reduction_rate']*100:.3f}%")
                st.write(f"Horizon: day {config_summary['horizon_day']} "
                         f"(term {config_summary['max_staking_days']} days)")
                if summary['peak_release_day'] is not None:
                    st.write(f"Largest release: day {summary['peak_release_day']} "
                             f"({summary['peak_daily_release']:,.2f} TORUS)")

        show_validation_report(results)

        # Display charts
        create_charts(results)
        create_dilution_chart(st.session_state.dilution)

    else:
        # Show getting started message
        st.info("Upload a staking snapshot in the sidebar and click Run Projection to begin analysis")

        st.markdown("### Snapshot Format")
        st.markdown("""
        - `stakeEvents` / `createEvents`: user, id, shares, principal or torusAmount (18-decimal
          base units), timestamp, maturityDate, stakingDays, blockNumber
        - `rewardPoolData`: day, rewardPool, totalShares, penaltiesInPool
        - `totalSupply`, `currentProtocolDay` (optional)
        """)


if __name__ == "__main__":
    main()
